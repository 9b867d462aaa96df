"""
Permission management feature module.

Implements the global Role-Based Access Control (RBAC) catalog and resolves
a member's permissions inside one organization.
"""
