"""
Permission management API routes.

Any authenticated user can read the role and permission catalog; only
platform admins can change it.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.models import User
from app.features.permissions.schemas import (
    PermissionCreate,
    PermissionResponse,
    RoleCreate,
    RoleUpdate,
    RoleResponse,
    RoleWithPermissions,
    RolePermissionsUpdate,
    RolePermissionsResponse,
)
from app.features.permissions import service


router = APIRouter(tags=["permissions"])


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleWithPermissions])
async def list_roles(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    search: Optional[str] = None,
):
    """List all roles with their permissions."""
    if search and search.strip():
        return await service.search_roles(db, search)
    return await service.list_roles(db)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new role (admin only)."""
    return await service.create_role(
        db, name=role.name, description=role.description, actor_id=admin.id, request=request
    )


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get a specific role with its permissions."""
    return await service.get_role(db, role_id)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Rename a role or change its description (admin only)."""
    return await service.update_role(
        db,
        role_id,
        name=role_update.name,
        description=role_update.description,
        actor_id=admin.id,
        request=request,
    )


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete a role that no member or invitation uses (admin only)."""
    await service.delete_role(db, role_id, actor_id=admin.id, request=request)


@router.get("/roles/{role_id}/permissions", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get the permission keys granted to a role."""
    permission_ids = await service.get_permissions_for_role(db, role_id)
    return RolePermissionsResponse(role_id=role_id, permission_ids=permission_ids)


@router.put("/roles/{role_id}/permissions", response_model=RolePermissionsResponse)
async def set_role_permissions(
    role_id: str,
    payload: RolePermissionsUpdate,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Replace a role's permissions (admin only).

    The role ends up with exactly the listed permissions; unknown ids reject
    the whole request.
    """
    permission_ids = await service.set_role_permissions(
        db, role_id, payload.permission_ids, actor_id=admin.id, request=request
    )
    return RolePermissionsResponse(role_id=role_id, permission_ids=permission_ids)


# ============================================================================
# Permission Catalog Routes
# ============================================================================

@router.get("/catalog", response_model=List[PermissionResponse])
async def list_permissions(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    category: Optional[str] = None,
):
    """List all permissions, optionally within one category."""
    return await service.list_permissions(db, category=category)


@router.post("/catalog", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new permission (admin only)."""
    return await service.create_permission(
        db,
        permission.id,
        description=permission.description,
        category=permission.category,
        actor_id=admin.id,
        request=request,
    )


@router.delete("/catalog/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: str,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete a permission and remove it from every role (admin only)."""
    await service.delete_permission(db, permission_id, actor_id=admin.id, request=request)
