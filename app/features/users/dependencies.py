"""
FastAPI dependencies for authentication and authorization.
"""
from typing import Annotated
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

from app.core import config
from app.core.database.base import utcnow
from app.core.database.engine import get_db
from app.core.exceptions import AuthenticationError, ForbiddenError
from app.features.users.models import User
from app.features.users.auth import verify_jwt_token, get_appwrite_user
from app.utils import get_logger


log = get_logger(__name__)
security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from JWT token.

    This dependency:
    1. Extracts JWT from Authorization header
    2. Verifies JWT with Appwrite
    3. Looks up or provisions the user in the local database
    4. Updates last_login_at timestamp

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    payload = verify_jwt_token(credentials.credentials)
    appwrite_user_id = payload.get("userId")

    if not appwrite_user_id:
        raise AuthenticationError("Invalid token payload")

    result = await db.execute(
        select(User).where(User.appwrite_id == appwrite_user_id, User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()

    # First request from this account: provision it locally
    if user is None:
        account = await run_in_threadpool(get_appwrite_user, appwrite_user_id)
        email = account["email"].strip().lower()
        if not email:
            raise AuthenticationError("Account has no email address")

        user = User(
            appwrite_id=appwrite_user_id,
            email=email,
            name=account["name"],
            is_admin=email in config.SUPERUSER_EMAILS,
            last_login_at=utcnow(),
        )
        db.add(user)
        log.info("Provisioned user %s for Appwrite account %s", email, appwrite_user_id)
    else:
        user.last_login_at = utcnow()

    await db.commit()
    await db.refresh(user)

    if not user.is_active:
        raise ForbiddenError("User account is deactivated")

    return user


async def get_current_admin_user(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """
    Require platform admin privileges.

    Usage:
        @router.delete("/users/{user_id}")
        async def delete_user(
            user_id: str,
            admin: User = Depends(get_current_admin_user)
        ):
            # Only admins can access this endpoint
            ...
    """
    if not user.is_admin:
        raise ForbiddenError("Admin privileges required")
    return user


def get_authorization_header(request: Request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
