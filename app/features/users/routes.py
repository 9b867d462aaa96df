"""
User feature routes.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import InvalidInputError
from app.features.audit.service import AuditAction, record_audit
from app.features.users.models import User
from app.features.users.schemas import UserResponse, UserPublic, UserUpdate, UserListResponse
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.service import get_active_user, list_users, soft_delete_user


router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    # Update only provided fields
    if update_data.name is not None:
        user.name = update_data.name
    if update_data.avatar_url is not None:
        user.avatar_url = update_data.avatar_url

    await db.commit()
    await db.refresh(user)
    return user


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
async def delete_current_user(
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete the current user's account (soft delete)."""
    await soft_delete_user(db, user, actor_id=user.id, request=request)


# Admin-only routes
@router.get("/", response_model=UserListResponse)
async def list_users_endpoint(
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = None,
):
    """List users with optional search by email or name (admin only)."""
    users, total = await list_users(db, skip=skip, limit=limit, search=search)
    return UserListResponse(
        items=[UserResponse.model_validate(u) for u in users],
        total=total,
    )


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get public user profile by ID."""
    return await get_active_user(db, user_id)


@router.patch("/{user_id}/admin", response_model=UserResponse)
async def toggle_admin_status(
    user_id: str,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Toggle admin status for a user (admin only)."""
    user = await get_active_user(db, user_id)

    # Prevent self-demotion
    if user.id == admin.id:
        raise InvalidInputError("Cannot modify your own admin status")

    user.is_admin = not user.is_admin
    record_audit(
        db,
        actor_id=admin.id,
        action=AuditAction.UPDATE_USER,
        entity_type="User",
        entity_id=user.id,
        details={"is_admin": user.is_admin},
        request=request,
    )
    await db.commit()
    await db.refresh(user)
    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Soft-delete a user account (admin only)."""
    user = await get_active_user(db, user_id)

    # Prevent self-deletion through the admin route
    if user.id == admin.id:
        raise InvalidInputError("Cannot delete your own account from the admin panel")

    await soft_delete_user(db, user, actor_id=admin.id, request=request)
