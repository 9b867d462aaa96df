"""
User lifecycle operations that touch other features' tables.
"""
from typing import Optional
from fastapi import Request
from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.exceptions import NotFoundError
from app.features.audit.service import AuditAction, record_audit
from app.features.invitations.models import Invitation
from app.features.organizations.models import OrganizationMember
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def get_active_user(db: AsyncSession, user_id: str) -> User:
    """Load a non-deleted user or raise NotFoundError."""
    result = await db.execute(
        select(User).where(User.id == user_id, User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User")
    return user


async def list_users(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 50,
    search: Optional[str] = None,
) -> tuple[list[User], int]:
    stmt = select(User).where(User.deleted_at.is_(None))
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.email.ilike(pattern), User.name.ilike(pattern)))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    result = await db.execute(stmt.order_by(User.created_at.desc(), User.id).offset(skip).limit(limit))
    return list(result.scalars().all()), total


async def soft_delete_user(
    db: AsyncSession,
    user: User,
    actor_id: Optional[str],
    request: Optional[Request] = None,
) -> None:
    """
    Soft-delete a user.

    Their memberships go with them; invitations they issued stay, with
    invited_by cleared. One transaction.
    """
    now = utcnow()
    try:
        user.deleted_at = now
        user.is_active = False

        memberships = await db.execute(
            update(OrganizationMember)
            .where(OrganizationMember.user_id == user.id, OrganizationMember.deleted_at.is_(None))
            .values(deleted_at=now, is_active=False)
        )
        invitations = await db.execute(
            update(Invitation)
            .where(Invitation.invited_by == user.id)
            .values(invited_by=None)
        )

        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.DELETE_USER,
            entity_type="User",
            entity_id=user.id,
            details={
                "email": user.email,
                "memberships_removed": memberships.rowcount,
                "invitations_detached": invitations.rowcount,
            },
            request=request,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    log.info("Soft-deleted user %s", user.id)
