"""
User feature module.

Appwrite-backed identity, first-login provisioning and profile routes.
"""
