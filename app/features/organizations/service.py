"""
Organization and membership operations.

Each public function is one transaction: it commits on success and rolls the
session back before re-raising on failure. Audit entries ride along in the
same transaction.
"""
import re
from typing import Optional
from fastapi import Request
from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.exceptions import (
    AlreadyMemberError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from app.features.audit.service import AuditAction, record_audit
from app.features.invitations.models import Invitation
from app.features.organizations.models import Organization, OrganizationMember, OrgStatus
from app.features.permissions.constants import RoleName
from app.features.permissions.service import get_role, get_role_by_name
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Slugs
# ============================================================================

def slugify(name: str) -> str:
    """Lower-case, dash-separated, ASCII alphanumerics only."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:90] or "organization"


async def slug_taken(db: AsyncSession, slug: str, exclude_id: Optional[str] = None) -> bool:
    stmt = select(Organization.id).where(Organization.slug == slug, Organization.deleted_at.is_(None))
    if exclude_id:
        stmt = stmt.where(Organization.id != exclude_id)
    result = await db.execute(stmt)
    return result.first() is not None


async def generate_unique_slug(db: AsyncSession, name: str) -> str:
    """Slug derived from the name, with -2, -3, ... appended on collision."""
    base = slugify(name)
    candidate = base
    suffix = 2
    while await slug_taken(db, candidate):
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


# ============================================================================
# Organizations
# ============================================================================

async def member_count(db: AsyncSession, organization_id: str) -> int:
    result = await db.execute(
        select(func.count(OrganizationMember.id)).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.is_active.is_(True),
            OrganizationMember.deleted_at.is_(None),
        )
    )
    return result.scalar() or 0


async def create_organization(
    db: AsyncSession,
    creator: User,
    name: str,
    slug: Optional[str] = None,
    website: Optional[str] = None,
    request: Optional[Request] = None,
) -> Organization:
    """
    Create an organization with its creator as Owner.

    Raises:
        ConflictError: An explicit slug is already in use
    """
    if slug:
        if await slug_taken(db, slug):
            raise ConflictError("Organization with this slug already exists")
    else:
        slug = await generate_unique_slug(db, name)

    owner_role = await get_role_by_name(db, RoleName.OWNER.value)

    organization = Organization(name=name, slug=slug, website=website, status=OrgStatus.ACTIVE)
    try:
        db.add(organization)
        await db.flush()

        db.add(OrganizationMember(
            organization_id=organization.id,
            user_id=creator.id,
            role_id=owner_role.id,
            is_active=True,
        ))
        record_audit(
            db,
            actor_id=creator.id,
            action=AuditAction.CREATE_ORGANIZATION,
            entity_type="Organization",
            entity_id=organization.id,
            organization_id=organization.id,
            details={"name": name, "slug": slug},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Organization with this slug already exists")

    await db.refresh(organization)
    log.info("User %s created organization %s (%s)", creator.id, organization.id, slug)
    return organization


async def list_my_memberships(db: AsyncSession, user_id: str) -> list[OrganizationMember]:
    """Active memberships of a user in organizations that still exist."""
    result = await db.execute(
        select(OrganizationMember)
        .join(Organization, Organization.id == OrganizationMember.organization_id)
        .where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.is_active.is_(True),
            OrganizationMember.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
        .order_by(OrganizationMember.joined_at)
    )
    return list(result.scalars().all())


async def update_organization(
    db: AsyncSession,
    organization: Organization,
    actor_id: str,
    name: Optional[str] = None,
    slug: Optional[str] = None,
    website: Optional[str] = None,
    request: Optional[Request] = None,
) -> Organization:
    changes = {}
    if name is not None and name != organization.name:
        changes["name"] = {"from": organization.name, "to": name}
        organization.name = name
    if slug is not None and slug != organization.slug:
        if await slug_taken(db, slug, exclude_id=organization.id):
            raise ConflictError("Organization with this slug already exists")
        changes["slug"] = {"from": organization.slug, "to": slug}
        organization.slug = slug
    if website is not None and website != organization.website:
        changes["website"] = {"from": organization.website, "to": website}
        organization.website = website

    if not changes:
        return organization

    try:
        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.UPDATE_ORGANIZATION,
            entity_type="Organization",
            entity_id=organization.id,
            organization_id=organization.id,
            details=changes,
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Organization with this slug already exists")

    await db.refresh(organization)
    return organization


async def set_organization_status(
    db: AsyncSession,
    organization: Organization,
    new_status: OrgStatus,
    actor_id: str,
    request: Optional[Request] = None,
) -> Organization:
    previous = organization.status
    organization.status = new_status
    record_audit(
        db,
        actor_id=actor_id,
        action=AuditAction.UPDATE_ORGANIZATION,
        entity_type="Organization",
        entity_id=organization.id,
        organization_id=organization.id,
        details={"status": {"from": previous.value, "to": new_status.value}},
        request=request,
    )
    await db.commit()
    await db.refresh(organization)
    return organization


async def delete_organization(
    db: AsyncSession,
    organization: Organization,
    actor_id: str,
    request: Optional[Request] = None,
) -> None:
    """Soft-delete an organization together with its memberships and invitations."""
    now = utcnow()
    try:
        organization.deleted_at = now

        members = await db.execute(
            update(OrganizationMember)
            .where(
                OrganizationMember.organization_id == organization.id,
                OrganizationMember.deleted_at.is_(None),
            )
            .values(deleted_at=now, is_active=False)
        )
        invitations = await db.execute(
            update(Invitation)
            .where(Invitation.organization_id == organization.id, Invitation.deleted_at.is_(None))
            .values(deleted_at=now)
        )

        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.DELETE_ORGANIZATION,
            entity_type="Organization",
            entity_id=organization.id,
            organization_id=organization.id,
            details={
                "name": organization.name,
                "members_removed": members.rowcount,
                "invitations_removed": invitations.rowcount,
            },
            request=request,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    log.info("Organization %s deleted by %s", organization.id, actor_id)


async def list_organizations(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 50,
    search: Optional[str] = None,
    status: Optional[OrgStatus] = None,
) -> tuple[list[Organization], int]:
    """Every non-deleted organization, for platform admins."""
    stmt = select(Organization).where(Organization.deleted_at.is_(None))
    if status is not None:
        stmt = stmt.where(Organization.status == status)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Organization.name.ilike(pattern), Organization.slug.ilike(pattern)))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    result = await db.execute(stmt.order_by(Organization.created_at.desc(), Organization.id).offset(skip).limit(limit))
    return list(result.scalars().all()), total


# ============================================================================
# Members
# ============================================================================

async def list_members(db: AsyncSession, organization_id: str) -> list[OrganizationMember]:
    """Non-deleted members, active and inactive."""
    result = await db.execute(
        select(OrganizationMember)
        .where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.deleted_at.is_(None),
        )
        .order_by(OrganizationMember.joined_at)
    )
    return list(result.scalars().all())


async def get_member(db: AsyncSession, organization_id: str, member_id: str) -> OrganizationMember:
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.id == member_id,
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.deleted_at.is_(None),
        )
    )
    member = result.scalar_one_or_none()
    if member is None:
        raise NotFoundError("Member")
    return member


def is_owner(member: OrganizationMember) -> bool:
    return member.role is not None and member.role.name == RoleName.OWNER.value


async def update_member(
    db: AsyncSession,
    actor: OrganizationMember,
    member_id: str,
    role_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    request: Optional[Request] = None,
) -> OrganizationMember:
    """
    Change a member's role or active flag.

    Owners are changed only through transfer_ownership, and nobody edits their
    own membership.
    """
    member = await get_member(db, actor.organization_id, member_id)

    if member.id == actor.id:
        raise ForbiddenError("You cannot change your own membership")
    if is_owner(member):
        raise ForbiddenError("The organization owner can only change through an ownership transfer")

    changes = {}
    if role_id is not None and role_id != member.role_id:
        role = await get_role(db, role_id)
        if role.name == RoleName.OWNER.value:
            raise InvalidInputError("Use the ownership transfer to appoint a new owner")
        changes["role"] = {"from": member.role.name, "to": role.name}
        member.role_id = role.id
        member.role = role
    if is_active is not None and is_active != member.is_active:
        changes["is_active"] = {"from": member.is_active, "to": is_active}
        member.is_active = is_active

    if not changes:
        return member

    record_audit(
        db,
        actor_id=actor.user_id,
        action=AuditAction.UPDATE_MEMBER,
        entity_type="OrganizationMember",
        entity_id=member.id,
        organization_id=member.organization_id,
        details={"user_id": member.user_id, **changes},
        request=request,
    )
    await db.commit()
    await db.refresh(member)
    return member


async def remove_member(
    db: AsyncSession,
    actor: OrganizationMember,
    member_id: str,
    request: Optional[Request] = None,
) -> None:
    """Soft-delete a membership. The owner cannot be removed."""
    member = await get_member(db, actor.organization_id, member_id)

    if is_owner(member):
        raise ForbiddenError("The organization owner cannot be removed")

    member.soft_delete()
    member.is_active = False
    record_audit(
        db,
        actor_id=actor.user_id,
        action=AuditAction.REMOVE_MEMBER,
        entity_type="OrganizationMember",
        entity_id=member.id,
        organization_id=member.organization_id,
        details={"user_id": member.user_id, "role": member.role.name},
        request=request,
    )
    await db.commit()


async def transfer_ownership(
    db: AsyncSession,
    actor: OrganizationMember,
    target_member_id: str,
    request: Optional[Request] = None,
) -> OrganizationMember:
    """
    Make another active member the Owner; the current owner becomes Admin.

    Raises:
        ForbiddenError: The caller is not the owner
        InvalidInputError: The target is the caller or is inactive
    """
    if not is_owner(actor):
        raise ForbiddenError("Only the organization owner can transfer ownership")

    target = await get_member(db, actor.organization_id, target_member_id)
    if target.id == actor.id:
        raise InvalidInputError("You already own this organization")
    if not target.is_active:
        raise InvalidInputError("Ownership can only go to an active member")

    owner_role = await get_role_by_name(db, RoleName.OWNER.value)
    admin_role = await get_role_by_name(db, RoleName.ADMIN.value)

    try:
        target.role_id = owner_role.id
        target.role = owner_role
        actor.role_id = admin_role.id
        actor.role = admin_role
        record_audit(
            db,
            actor_id=actor.user_id,
            action=AuditAction.TRANSFER_OWNERSHIP,
            entity_type="Organization",
            entity_id=actor.organization_id,
            organization_id=actor.organization_id,
            details={"from_user_id": actor.user_id, "to_user_id": target.user_id},
            request=request,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(target)
    log.info("Ownership of %s moved from %s to %s", actor.organization_id, actor.user_id, target.user_id)
    return target


async def add_member(
    db: AsyncSession,
    organization: Organization,
    user: User,
    role_id: str,
    actor_id: str,
    request: Optional[Request] = None,
) -> OrganizationMember:
    """
    Add a user to an organization directly (platform admin action).

    An inactive or soft-deleted membership is reactivated in place with the
    new role; a live row wins over soft-deleted ones, then the newest.

    Raises:
        AlreadyMemberError: The user already holds an active membership
    """
    role = await get_role(db, role_id)

    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization.id,
            OrganizationMember.user_id == user.id,
        )
        .order_by(
            OrganizationMember.deleted_at.is_not(None),
            OrganizationMember.created_at.desc(),
            OrganizationMember.id.desc(),
        )
        .limit(1)
    )
    member = result.scalars().first()

    if member is not None and member.deleted_at is None and member.is_active:
        raise AlreadyMemberError()

    try:
        if member is None:
            member = OrganizationMember(
                organization_id=organization.id,
                user_id=user.id,
                role_id=role.id,
                is_active=True,
            )
            db.add(member)
        else:
            member.role_id = role.id
            member.role = role
            member.is_active = True
            member.joined_at = utcnow()
            member.deleted_at = None
        await db.flush()

        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.ADD_MEMBER,
            entity_type="OrganizationMember",
            entity_id=member.id,
            organization_id=organization.id,
            details={"user_id": user.id, "role": role.name},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise AlreadyMemberError()

    await db.refresh(member)
    return member
