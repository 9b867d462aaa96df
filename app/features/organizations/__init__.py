"""
Organization feature module.

Tenants, their memberships and the organization context of a request.
"""
