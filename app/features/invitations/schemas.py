"""
Pydantic schemas for invitation requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr, field_validator

from app.features.invitations.models import InvitationStatus
from app.features.organizations.schemas import RoleSummary


class InvitationCreate(BaseModel):
    """Schema for inviting an email address into the header's organization."""
    email: EmailStr
    role_id: str = Field(..., description="Role granted on acceptance")

    @field_validator('email')
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.strip().lower()


class InvitationTokenRequest(BaseModel):
    """Body of accept and decline calls."""
    token: str = Field(..., min_length=1, max_length=64)


class InvitationResponse(BaseModel):
    """Invitation as seen by organization members. The token is never returned."""
    id: str
    organization_id: str
    email: str
    role: RoleSummary
    status: InvitationStatus
    expires_at: datetime
    invited_by: str | None = None
    accepted_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class InvitationCreatedResponse(InvitationResponse):
    """Returned once to the inviter, with the link to share."""
    invite_link: str


class InvitationValidation(BaseModel):
    """What an invitee may learn from a token before signing in."""
    email: str
    role: RoleSummary
    organization_id: str
    organization_name: str
    expires_at: datetime


class MyInvitationResponse(BaseModel):
    """A pending invitation addressed to the current user."""
    id: str
    token: str
    organization_id: str
    organization_name: str
    role: RoleSummary
    expires_at: datetime
    invited_by_name: str | None = None


class AcceptInvitationResponse(BaseModel):
    organization_id: str
    member_id: str
    role: RoleSummary
