"""
Membership authorization resolver and route guards.

A user's permissions in an organization are exactly the permissions of the
role on their active, non-deleted membership. No membership, no permissions.
"""
from typing import Annotated, Set
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import ForbiddenError
from app.features.organizations.dependencies import get_organization_context
from app.features.organizations.models import Organization, OrganizationMember
from app.features.permissions.models import role_permissions
from app.utils import get_logger


log = get_logger(__name__)


async def resolve_permissions(
    db: AsyncSession,
    user_id: str,
    organization_id: str
) -> Set[str]:
    """
    Get the permission keys a user holds in an organization.

    One query: membership -> role -> role_permissions. Inactive or deleted
    memberships and deleted organizations resolve to nothing.

    Returns:
        Set of permission keys; empty on any database error
    """
    stmt = (
        select(role_permissions.c.permission_id)
        .join(OrganizationMember, OrganizationMember.role_id == role_permissions.c.role_id)
        .join(Organization, Organization.id == OrganizationMember.organization_id)
        .where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.is_active.is_(True),
            OrganizationMember.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError:
        log.exception("Permission lookup failed for user %s in org %s", user_id, organization_id)
        return set()

    return set(result.scalars().all())


def require_permission(permission_key: str):
    """
    FastAPI dependency to require a permission in the request's organization.

    Usage:
        @router.delete("/current")
        async def delete_org(
            member: OrganizationMember = Depends(require_permission("org.delete"))
        ):
            # Caller holds org.delete in the X-Organization-Id organization
            pass

    Returns:
        Dependency function that returns the caller's membership if granted

    Raises:
        ForbiddenError: 403 if the caller's role lacks the permission
    """
    key = getattr(permission_key, "value", permission_key)

    async def permission_dependency(
        membership: Annotated[OrganizationMember, Depends(get_organization_context)],
        db: Annotated[AsyncSession, Depends(get_db)]
    ) -> OrganizationMember:
        permissions = await resolve_permissions(db, membership.user_id, membership.organization_id)

        if key not in permissions:
            log.debug(
                "User %s denied %s in org %s", membership.user_id, key, membership.organization_id
            )
            raise ForbiddenError(f"Permission denied: {key}")

        return membership

    return permission_dependency
