"""
Organization feature routes.

Routes under /current and /members act on the organization named by the
X-Organization-Id header.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import InvalidInputError, NotFoundError
from app.features.users.models import User
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.service import get_active_user
from app.features.organizations.models import OrganizationMember, OrgStatus
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationStatusUpdate,
    OrganizationResponse,
    OrganizationListResponse,
    UserOrganizationRole,
    RoleSummary,
    MemberResponse,
    MemberUpdate,
    AddMemberRequest,
    TransferOwnershipRequest,
    MyPermissionsResponse,
    OrganizationDetailResponse,
)
from app.features.organizations.dependencies import (
    get_organization_id,
    get_organization_by_id,
    get_organization_context,
)
from app.features.organizations import service
from app.features.permissions.constants import PermissionKey
from app.features.permissions.dependencies import require_permission, resolve_permissions


router = APIRouter(tags=["organizations"])


async def _with_member_count(db: AsyncSession, organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = await service.member_count(db, organization.id)
    return response


# Organization endpoints for members
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization. The caller becomes its Owner."""
    organization = await service.create_organization(
        db,
        creator=user,
        name=org_data.name,
        slug=org_data.slug,
        website=org_data.website,
        request=request,
    )
    return await _with_member_count(db, organization)


@router.get("/my", response_model=list[UserOrganizationRole])
async def get_my_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get all organizations the current user is a member of, with their role."""
    memberships = await service.list_my_memberships(db, user.id)
    return [
        UserOrganizationRole(
            organization=await _with_member_count(db, membership.organization),
            role=RoleSummary.model_validate(membership.role),
            joined_at=membership.joined_at,
        )
        for membership in memberships
    ]


@router.get("/my-permissions", response_model=MyPermissionsResponse)
async def get_my_permissions(
    organization_id: Annotated[str, Depends(get_organization_id)],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Get the permission keys the caller holds in the header's organization.

    Callers without an active membership get an empty list.
    """
    permissions = await resolve_permissions(db, user.id, organization_id)
    return MyPermissionsResponse(organization_id=organization_id, permissions=sorted(permissions))


@router.get("/current", response_model=OrganizationResponse)
async def get_current_organization(
    membership: Annotated[OrganizationMember, Depends(get_organization_context)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get the organization named by the X-Organization-Id header."""
    return await _with_member_count(db, membership.organization)


@router.patch("/current", response_model=OrganizationResponse)
async def update_current_organization(
    org_update: OrganizationUpdate,
    request: Request,
    membership: Annotated[OrganizationMember, Depends(require_permission(PermissionKey.ORG_UPDATE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update organization details (requires org.update)."""
    organization = await service.update_organization(
        db,
        membership.organization,
        actor_id=membership.user_id,
        name=org_update.name,
        slug=org_update.slug,
        website=org_update.website,
        request=request,
    )
    return await _with_member_count(db, organization)


@router.delete("/current", status_code=status.HTTP_204_NO_CONTENT)
async def delete_current_organization(
    request: Request,
    membership: Annotated[OrganizationMember, Depends(require_permission(PermissionKey.ORG_DELETE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete the organization with its members and invitations (requires org.delete)."""
    await service.delete_organization(db, membership.organization, actor_id=membership.user_id, request=request)


# Member management endpoints
@router.get("/members", response_model=list[MemberResponse])
async def list_organization_members(
    membership: Annotated[OrganizationMember, Depends(get_organization_context)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List members of the organization."""
    return await service.list_members(db, membership.organization_id)


@router.patch("/members/{member_id}", response_model=MemberResponse)
async def update_organization_member(
    member_id: str,
    member_update: MemberUpdate,
    request: Request,
    membership: Annotated[OrganizationMember, Depends(require_permission(PermissionKey.MEMBERS_UPDATE_ROLE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a member's role or active flag (requires members.update_role)."""
    return await service.update_member(
        db,
        membership,
        member_id,
        role_id=member_update.role_id,
        is_active=member_update.is_active,
        request=request,
    )


@router.delete("/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_organization_member(
    member_id: str,
    request: Request,
    membership: Annotated[OrganizationMember, Depends(require_permission(PermissionKey.MEMBERS_REMOVE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a member from the organization (requires members.remove)."""
    await service.remove_member(db, membership, member_id, request=request)


@router.post("/transfer-ownership", response_model=MemberResponse)
async def transfer_ownership(
    payload: TransferOwnershipRequest,
    request: Request,
    membership: Annotated[OrganizationMember, Depends(require_permission(PermissionKey.OWNERSHIP_TRANSFER))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Hand the Owner role to another member; the caller becomes Admin."""
    return await service.transfer_ownership(db, membership, payload.member_id, request=request)


# Admin-only endpoints
@router.get("/", response_model=OrganizationListResponse)
async def list_organizations(
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = None,
    org_status: Optional[OrgStatus] = Query(None, alias="status"),
):
    """List all organizations (admin only)."""
    organizations, total = await service.list_organizations(
        db, skip=skip, limit=limit, search=search, status=org_status
    )
    return OrganizationListResponse(
        items=[await _with_member_count(db, org) for org in organizations],
        total=total,
    )


@router.get("/{organization_id}", response_model=OrganizationDetailResponse)
async def get_organization_details(
    organization_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get an organization with its owner and members (admin only)."""
    organization = await get_organization_by_id(organization_id, db)
    members = await service.list_members(db, organization.id)
    owner = next((member for member in members if service.is_owner(member)), None)
    return OrganizationDetailResponse(
        organization=await _with_member_count(db, organization),
        owner=MemberResponse.model_validate(owner) if owner else None,
        members=[MemberResponse.model_validate(member) for member in members],
    )


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    org_update: OrganizationUpdate,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Edit any organization's name, slug or website (admin only)."""
    organization = await get_organization_by_id(organization_id, db)
    organization = await service.update_organization(
        db,
        organization,
        actor_id=admin.id,
        name=org_update.name,
        slug=org_update.slug,
        website=org_update.website,
        request=request,
    )
    return await _with_member_count(db, organization)


@router.patch("/{organization_id}/status", response_model=OrganizationResponse)
async def update_organization_status(
    organization_id: str,
    payload: OrganizationStatusUpdate,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Activate, suspend or archive an organization (admin only)."""
    organization = await get_organization_by_id(organization_id, db)
    organization = await service.set_organization_status(
        db, organization, payload.status, actor_id=admin.id, request=request
    )
    return await _with_member_count(db, organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    organization_id: str,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete an organization with its members and invitations (admin only)."""
    organization = await get_organization_by_id(organization_id, db)
    await service.delete_organization(db, organization, actor_id=admin.id, request=request)


@router.post("/{organization_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_user_to_organization(
    organization_id: str,
    payload: AddMemberRequest,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Add a user to an organization directly (admin only)."""
    organization = await get_organization_by_id(organization_id, db)

    if payload.user_id:
        user = await get_active_user(db, payload.user_id)
    elif payload.email:
        result = await db.execute(
            select(User).where(User.email == payload.email.lower(), User.deleted_at.is_(None))
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User")
    else:
        raise InvalidInputError("Either user_id or email is required")

    return await service.add_member(
        db, organization, user, payload.role_id, actor_id=admin.id, request=request
    )
