"""
Pydantic schemas for the role/permission registry.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    description: Optional[str] = Field(None, max_length=1000, description="Permission description")
    category: Optional[str] = Field(None, max_length=50, description="Grouping shown in admin UIs (e.g. 'Billing')")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""
    id: str = Field(..., min_length=1, max_length=100, description="Permission key (e.g. 'reports.export')")

    @field_validator('id')
    @classmethod
    def key_format(cls, v: str) -> str:
        """Validate permission key format."""
        if not v.replace('_', '').replace('.', '').isalnum():
            raise ValueError('Permission key must contain only alphanumeric characters, underscores and dots')
        return v.lower()


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a new role."""

    @field_validator('name')
    @classmethod
    def name_alphanumeric(cls, v: str) -> str:
        """Validate role name format."""
        if not v.replace('_', '').replace('-', '').replace(' ', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, spaces, underscores, and hyphens')
        return v.strip()


class RoleUpdate(BaseModel):
    """Schema for updating a role."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=1000)


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Role with its granted permissions."""
    permissions: List[PermissionResponse] = []


class RolePermissionsUpdate(BaseModel):
    """Full replacement of a role's permission set."""
    permission_ids: List[str] = Field(..., description="Every permission the role should hold afterwards")


class RolePermissionsResponse(BaseModel):
    role_id: str
    permission_ids: List[str]
