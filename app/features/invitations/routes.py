"""
Invitation routes.

Organization-side routes act on the X-Organization-Id organization;
/validate is public and rate limited per client address; /accept is
rate limited per bearer token.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Query, Request, status
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.users.models import User
from app.features.users.dependencies import get_current_user
from app.features.organizations.models import OrganizationMember
from app.features.organizations.schemas import RoleSummary
from app.features.permissions.constants import PermissionKey
from app.features.permissions.dependencies import require_permission
from app.features.invitations.schemas import (
    InvitationCreate,
    InvitationTokenRequest,
    InvitationResponse,
    InvitationCreatedResponse,
    InvitationValidation,
    MyInvitationResponse,
    AcceptInvitationResponse,
)
from app.features.invitations import service


router = APIRouter(tags=["invitations"])


# Organization side
@router.post("/", response_model=InvitationCreatedResponse, status_code=status.HTTP_201_CREATED)
async def invite_member(
    payload: InvitationCreate,
    request: Request,
    membership: Annotated[OrganizationMember, Depends(require_permission(PermissionKey.MEMBERS_INVITE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Invite an email address into the organization (requires members.invite)."""
    invitation = await service.issue_invitation(
        db,
        organization_id=membership.organization_id,
        email=payload.email,
        role_id=payload.role_id,
        invited_by=membership.user_id,
        request=request,
    )
    return InvitationCreatedResponse(
        **InvitationResponse.model_validate(invitation).model_dump(),
        invite_link=service.invite_link(invitation.token),
    )


@router.get("/", response_model=list[InvitationResponse])
async def list_invitations(
    membership: Annotated[OrganizationMember, Depends(require_permission(PermissionKey.MEMBERS_INVITE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List pending invitations of the organization (requires members.invite)."""
    return await service.list_pending_invitations(db, membership.organization_id)


# Invitee side
@router.get("/validate", response_model=InvitationValidation)
@limiter.limit("30/minute", key_func=get_remote_address)
async def validate_invitation(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    token: str = Query(..., min_length=1, max_length=64),
):
    """Check an invitation token before signing in. Public."""
    invitation = await service.validate_invitation(db, token)
    return InvitationValidation(
        email=invitation.email,
        role=RoleSummary.model_validate(invitation.role),
        organization_id=invitation.organization_id,
        organization_name=invitation.organization.name,
        expires_at=invitation.expires_at,
    )


@router.post("/accept", response_model=AcceptInvitationResponse)
@limiter.limit("10/minute")
async def accept_invitation(
    payload: InvitationTokenRequest,
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Accept an invitation sent to the current user's email."""
    member = await service.accept_invitation(db, payload.token, user, request=request)
    return AcceptInvitationResponse(
        organization_id=member.organization_id,
        member_id=member.id,
        role=RoleSummary.model_validate(member.role),
    )


@router.get("/mine", response_model=list[MyInvitationResponse])
async def list_my_invitations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List pending invitations addressed to the current user."""
    invitations = await service.list_my_invitations(db, user)
    return [
        MyInvitationResponse(
            id=invitation.id,
            token=invitation.token,
            organization_id=invitation.organization_id,
            organization_name=invitation.organization.name,
            role=RoleSummary.model_validate(invitation.role),
            expires_at=invitation.expires_at,
            invited_by_name=invitation.inviter.name if invitation.inviter else None,
        )
        for invitation in invitations
    ]


@router.post("/decline", status_code=status.HTTP_204_NO_CONTENT)
async def decline_invitation(
    payload: InvitationTokenRequest,
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Decline an invitation sent to the current user's email."""
    await service.decline_invitation(db, payload.token, user, request=request)


@router.delete("/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_invitation(
    invitation_id: str,
    request: Request,
    membership: Annotated[OrganizationMember, Depends(require_permission(PermissionKey.MEMBERS_INVITE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Revoke an invitation (requires members.invite)."""
    await service.revoke_invitation(
        db, membership.organization_id, invitation_id, actor_id=membership.user_id, request=request
    )
