"""
Organization-related dependency injection functions.

The active organization of a request is named explicitly by the
``X-Organization-Id`` header; there is no server-side "current organization".
"""
from typing import Annotated, Optional
from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from app.features.users.models import User
from app.features.users.dependencies import get_current_user
from app.features.organizations.models import Organization, OrganizationMember


ORGANIZATION_HEADER = "X-Organization-Id"


async def get_organization_id(
    x_organization_id: Annotated[Optional[str], Header(alias=ORGANIZATION_HEADER)] = None
) -> str:
    """
    Read the organization id from the request header.

    Raises:
        InvalidInputError: 400 if the header is missing or blank
    """
    if not x_organization_id or not x_organization_id.strip():
        raise InvalidInputError(f"{ORGANIZATION_HEADER} header is required")
    return x_organization_id.strip()


async def get_organization_by_id(
    organization_id: str,
    db: AsyncSession
) -> Organization:
    """
    Get a non-deleted organization by ID or raise 404.

    Args:
        organization_id: Organization ULID
        db: Database session

    Returns:
        Organization model

    Raises:
        NotFoundError: 404 if organization not found
    """
    result = await db.execute(
        select(Organization).where(
            Organization.id == organization_id,
            Organization.deleted_at.is_(None)
        )
    )
    organization = result.scalar_one_or_none()

    if organization is None:
        raise NotFoundError("Organization")

    return organization


async def get_active_membership(
    db: AsyncSession,
    user_id: str,
    organization_id: str
) -> Optional[OrganizationMember]:
    """The user's live, active membership in an organization, if any."""
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
            OrganizationMember.is_active.is_(True),
            OrganizationMember.deleted_at.is_(None)
        )
    )
    return result.scalar_one_or_none()


async def get_organization_context(
    organization_id: Annotated[str, Depends(get_organization_id)],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> OrganizationMember:
    """
    Resolve the caller's membership in the organization named by the header.

    Returns:
        The caller's OrganizationMember (with organization and role loaded)

    Raises:
        InvalidInputError: 400 if the header is missing
        NotFoundError: 404 if the organization does not exist or is deleted
        ForbiddenError: 403 if the caller is not an active member
    """
    await get_organization_by_id(organization_id, db)

    membership = await get_active_membership(db, user.id, organization_id)
    if membership is None:
        raise ForbiddenError("You are not a member of this organization")

    return membership
