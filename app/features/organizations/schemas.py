"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr

from app.features.organizations.models import OrgStatus
from app.features.users.schemas import UserPublic


SLUG_PATTERN = "^[a-z0-9]+(?:-[a-z0-9]+)*$"


# Organization Schemas
class OrganizationBase(BaseModel):
    """Base organization schema."""
    name: str = Field(..., min_length=1, max_length=255)
    website: str | None = Field(None, max_length=255)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization; the creator becomes its Owner."""
    slug: str | None = Field(
        None,
        min_length=1,
        max_length=100,
        pattern=SLUG_PATTERN,
        description="URL-friendly identifier; derived from the name when omitted"
    )


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    slug: str | None = Field(None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    website: str | None = Field(None, max_length=255)


class OrganizationStatusUpdate(BaseModel):
    """Schema for changing an organization's lifecycle status (admin only)."""
    status: OrgStatus


class OrganizationResponse(OrganizationBase):
    """Schema for organization responses."""
    id: str
    slug: str
    status: OrgStatus
    created_at: datetime
    updated_at: datetime
    member_count: int | None = Field(None, description="Number of active members in this organization")

    model_config = {"from_attributes": True}


class OrganizationListResponse(BaseModel):
    items: list[OrganizationResponse]
    total: int


# Membership Schemas
class RoleSummary(BaseModel):
    id: str
    name: str

    model_config = {"from_attributes": True}


class UserOrganizationRole(BaseModel):
    """Schema for user's role in an organization."""
    organization: OrganizationResponse
    role: RoleSummary
    joined_at: datetime

    model_config = {"from_attributes": True}


class MemberResponse(BaseModel):
    """A member of an organization."""
    id: str
    organization_id: str
    user: UserPublic
    role: RoleSummary
    is_active: bool
    joined_at: datetime

    model_config = {"from_attributes": True}


class MemberUpdate(BaseModel):
    """Schema for changing a member's role or active flag."""
    role_id: str | None = None
    is_active: bool | None = None


class AddMemberRequest(BaseModel):
    """Schema for admin to add a user to an organization."""
    user_id: str | None = Field(None, description="ID of the user to add")
    email: EmailStr | None = Field(None, description="Email of the user to add, when the ID is unknown")
    role_id: str = Field(..., description="Role to grant in the organization")


class TransferOwnershipRequest(BaseModel):
    """Schema for handing the Owner role to another member."""
    member_id: str = Field(..., description="Membership ID of the new owner")


class MyPermissionsResponse(BaseModel):
    """Permission keys the caller holds in the header's organization."""
    organization_id: str
    permissions: list[str]


class OrganizationDetailResponse(BaseModel):
    """An organization with its owner and members, for platform admins."""
    organization: OrganizationResponse
    owner: MemberResponse | None = None
    members: list[MemberResponse]
