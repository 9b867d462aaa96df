"""
Invitation workflow.

    pending --accept--> accepted
    pending --expires_at passes--> expired

Expiry is lazy: validate and accept judge it from expires_at, and
expire_stale_invitations() brings the status column in line. Revoking or
declining soft-deletes the row.
"""
import secrets
from datetime import timedelta
from typing import Optional
from fastapi import Request
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.base import utcnow
from app.core.exceptions import (
    AlreadyMemberError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InvitationAlreadyProcessedError,
    InvitationExpiredError,
    InvitationNotFoundError,
    NotFoundError,
)
from app.features.audit.service import AuditAction, record_audit
from app.features.invitations.models import Invitation, InvitationStatus
from app.features.organizations.models import Organization, OrganizationMember
from app.features.permissions.constants import RoleName
from app.features.permissions.service import get_role
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def generate_token() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)


def invite_link(token: str) -> str:
    return f"{config.FRONTEND_URL.rstrip('/')}/accept-invite?token={token}"


async def expire_stale_invitations(db: AsyncSession, organization_id: Optional[str] = None) -> int:
    """
    Move pending invitations past expires_at to expired.

    Does not commit; the caller's transaction carries the change.

    Returns:
        Number of invitations expired
    """
    stmt = (
        update(Invitation)
        .where(
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at <= utcnow(),
            Invitation.deleted_at.is_(None),
        )
        .values(status=InvitationStatus.EXPIRED)
        .execution_options(synchronize_session="fetch")
    )
    if organization_id:
        stmt = stmt.where(Invitation.organization_id == organization_id)

    result = await db.execute(stmt)
    if result.rowcount:
        log.info("Expired %d stale invitation(s)", result.rowcount)
    return result.rowcount


async def get_invitation_by_token(db: AsyncSession, token: str) -> Optional[Invitation]:
    """Live invitation with this token in a live organization, if any."""
    result = await db.execute(
        select(Invitation)
        .join(Organization, Organization.id == Invitation.organization_id)
        .where(
            Invitation.token == token,
            Invitation.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
    )
    return result.scalars().first()


def ensure_acceptable(invitation: Optional[Invitation]) -> Invitation:
    """
    Apply the checks shared by validate and accept.

    Raises:
        InvitationNotFoundError: Unknown, revoked or declined token
        InvitationAlreadyProcessedError: Already accepted
        InvitationExpiredError: Past expires_at, even if the column still says pending
    """
    if invitation is None:
        raise InvitationNotFoundError()
    if invitation.status == InvitationStatus.ACCEPTED:
        raise InvitationAlreadyProcessedError()
    if invitation.status == InvitationStatus.EXPIRED or invitation.is_expired:
        raise InvitationExpiredError()
    return invitation


# ============================================================================
# Organization side
# ============================================================================

async def issue_invitation(
    db: AsyncSession,
    organization_id: str,
    email: str,
    role_id: str,
    invited_by: str,
    request: Optional[Request] = None,
) -> Invitation:
    """
    Invite an email address into an organization with a role.

    Older accepted or expired invitations for the same address are
    soft-deleted so the new one can take their place.

    Raises:
        AlreadyMemberError: The address belongs to an active member
        ConflictError: A pending, unexpired invitation already exists
        InvalidInputError: The role is Owner
    """
    email = email.strip().lower()
    role = await get_role(db, role_id)
    if role.name == RoleName.OWNER.value:
        raise InvalidInputError("The Owner role cannot be granted by invitation")

    try:
        await expire_stale_invitations(db, organization_id)

        result = await db.execute(
            select(OrganizationMember.id)
            .join(User, User.id == OrganizationMember.user_id)
            .where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.is_active.is_(True),
                OrganizationMember.deleted_at.is_(None),
                User.email == email,
            )
        )
        if result.first() is not None:
            raise AlreadyMemberError()

        result = await db.execute(
            select(Invitation).where(
                Invitation.organization_id == organization_id,
                Invitation.email == email,
                Invitation.deleted_at.is_(None),
            )
        )
        previous = result.scalar_one_or_none()
        if previous is not None:
            if previous.status == InvitationStatus.PENDING:
                raise ConflictError("An invitation is already pending for this email", code="already_invited")
            previous.soft_delete()
            await db.flush()

        invitation = Invitation(
            organization_id=organization_id,
            email=email,
            role_id=role.id,
            token=generate_token(),
            status=InvitationStatus.PENDING,
            expires_at=utcnow() + timedelta(days=config.INVITATION_EXPIRY_DAYS),
            invited_by=invited_by,
        )
        db.add(invitation)
        await db.flush()

        record_audit(
            db,
            actor_id=invited_by,
            action=AuditAction.INVITE_MEMBER,
            entity_type="Invitation",
            entity_id=invitation.id,
            organization_id=organization_id,
            details={"email": email, "role": role.name},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("An invitation is already pending for this email", code="already_invited")
    except Exception:
        await db.rollback()
        raise

    await db.refresh(invitation)
    # Mail delivery is not wired up; the link is returned to the inviter and logged
    log.info("Invitation %s for %s: %s", invitation.id, email, invite_link(invitation.token))
    return invitation


async def list_pending_invitations(db: AsyncSession, organization_id: str) -> list[Invitation]:
    await expire_stale_invitations(db, organization_id)
    await db.commit()

    result = await db.execute(
        select(Invitation)
        .where(
            Invitation.organization_id == organization_id,
            Invitation.status == InvitationStatus.PENDING,
            Invitation.deleted_at.is_(None),
        )
        .order_by(Invitation.created_at.desc())
    )
    return list(result.scalars().all())


async def revoke_invitation(
    db: AsyncSession,
    organization_id: str,
    invitation_id: str,
    actor_id: str,
    request: Optional[Request] = None,
) -> None:
    result = await db.execute(
        select(Invitation).where(
            Invitation.id == invitation_id,
            Invitation.organization_id == organization_id,
            Invitation.deleted_at.is_(None),
        )
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFoundError("Invitation", code="invitation_not_found")

    invitation.soft_delete()
    record_audit(
        db,
        actor_id=actor_id,
        action=AuditAction.REVOKE_INVITATION,
        entity_type="Invitation",
        entity_id=invitation.id,
        organization_id=organization_id,
        details={"email": invitation.email},
        request=request,
    )
    await db.commit()


# ============================================================================
# Invitee side
# ============================================================================

async def validate_invitation(db: AsyncSession, token: str) -> Invitation:
    """Read-only check of a token; returns the invitation when it can be accepted."""
    return ensure_acceptable(await get_invitation_by_token(db, token))


async def accept_invitation(
    db: AsyncSession,
    token: str,
    user: User,
    request: Optional[Request] = None,
) -> OrganizationMember:
    """
    Accept an invitation as the signed-in user.

    The status flip is a conditional update on status = pending, so of two
    concurrent accepts exactly one creates the membership.

    Raises:
        ForbiddenError: The invitation was sent to another address
        AlreadyMemberError: The user is already an active member (nothing changes)
        InvitationAlreadyProcessedError: Lost the race to a concurrent accept
    """
    invitation = ensure_acceptable(await get_invitation_by_token(db, token))

    if user.email.lower() != invitation.email.lower():
        raise ForbiddenError("This invitation was sent to a different email address")

    now = utcnow()
    try:
        claimed = await db.execute(
            update(Invitation)
            .where(
                Invitation.id == invitation.id,
                Invitation.status == InvitationStatus.PENDING,
                Invitation.deleted_at.is_(None),
            )
            .values(status=InvitationStatus.ACCEPTED, accepted_at=now)
        )
        if claimed.rowcount != 1:
            raise InvitationAlreadyProcessedError()

        # An already active member fails here and the rollback leaves the invitation pending
        result = await db.execute(
            select(OrganizationMember).where(
                OrganizationMember.organization_id == invitation.organization_id,
                OrganizationMember.user_id == user.id,
                OrganizationMember.deleted_at.is_(None),
            )
        )
        member = result.scalar_one_or_none()
        if member is not None and member.is_active:
            raise AlreadyMemberError()

        if member is None:
            member = OrganizationMember(
                organization_id=invitation.organization_id,
                user_id=user.id,
                role_id=invitation.role_id,
                is_active=True,
                joined_at=now,
            )
            db.add(member)
        else:
            member.role_id = invitation.role_id
            member.role = invitation.role
            member.is_active = True
            member.joined_at = now
        await db.flush()

        record_audit(
            db,
            actor_id=user.id,
            action=AuditAction.ACCEPT_INVITATION,
            entity_type="Invitation",
            entity_id=invitation.id,
            organization_id=invitation.organization_id,
            details={"member_id": member.id, "role": invitation.role.name},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise AlreadyMemberError()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(member)
    log.info("User %s joined organization %s via invitation %s", user.id, invitation.organization_id, invitation.id)
    return member


async def list_my_invitations(db: AsyncSession, user: User) -> list[Invitation]:
    """Pending, unexpired invitations addressed to the user's email."""
    result = await db.execute(
        select(Invitation)
        .join(Organization, Organization.id == Invitation.organization_id)
        .where(
            Invitation.email == user.email.lower(),
            Invitation.status == InvitationStatus.PENDING,
            Invitation.expires_at > utcnow(),
            Invitation.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
        .order_by(Invitation.created_at.desc())
    )
    return list(result.scalars().all())


async def decline_invitation(
    db: AsyncSession,
    token: str,
    user: User,
    request: Optional[Request] = None,
) -> None:
    invitation = await get_invitation_by_token(db, token)
    if invitation is None or invitation.status != InvitationStatus.PENDING:
        raise InvitationNotFoundError()

    if user.email.lower() != invitation.email.lower():
        raise ForbiddenError("This invitation does not belong to you")

    invitation.soft_delete()
    record_audit(
        db,
        actor_id=user.id,
        action=AuditAction.DECLINE_INVITATION,
        entity_type="Invitation",
        entity_id=invitation.id,
        organization_id=invitation.organization_id,
        request=request,
    )
    await db.commit()
