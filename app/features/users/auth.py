"""
Authentication utilities for Appwrite JWT verification.
"""
from typing import Any, Optional
import jwt
from appwrite.client import Client
from appwrite.services.users import Users
from appwrite.exception import AppwriteException

from app.core import config
from app.core.exceptions import AuthenticationError
from app.utils import get_logger


log = get_logger(__name__)


class AppwriteClient:
    """Singleton Appwrite client for server-side operations."""

    _instance: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create Appwrite client instance."""
        if cls._instance is None:
            cls._instance = Client()
            cls._instance.set_endpoint(config.APPWRITE_ENDPOINT)
            cls._instance.set_project(config.APPWRITE_PROJECT_ID)
            cls._instance.set_key(config.APPWRITE_API_KEY)
        return cls._instance


def verify_jwt_token(token: str) -> dict:
    """
    Decode an Appwrite JWT and return its payload.

    Appwrite signs the token; we check expiry here and confirm the account
    against the Appwrite API the first time we see it.

    Raises:
        AuthenticationError: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        log.info("Rejected token: %s", e)
        raise AuthenticationError("Invalid token")


def _field(account: Any, name: str, default: str = "") -> str:
    # The SDK returns plain dicts in older releases and models in newer ones
    if isinstance(account, dict):
        return account.get(name) or default
    return getattr(account, name, None) or default


def get_appwrite_user(user_id: str) -> dict:
    """
    Get the email and name of an Appwrite account.

    Raises:
        AuthenticationError: If the account cannot be fetched
    """
    try:
        users = Users(AppwriteClient.get_client())
        account = users.get(user_id)
    except AppwriteException as e:
        log.warning("Appwrite lookup failed for %s: %s", user_id, e)
        raise AuthenticationError("Failed to verify user")

    return {
        "email": _field(account, "email"),
        "name": _field(account, "name", "Unknown"),
    }
