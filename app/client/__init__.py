"""
Python client helpers for consumers of the API.
"""
from app.client.permissions import PermissionCache

__all__ = ["PermissionCache"]
