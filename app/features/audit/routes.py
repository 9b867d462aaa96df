"""
Audit log routes (platform admins only, read-only).
"""
from datetime import datetime
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import InvalidInputError
from app.features.audit.schemas import AuditLogResponse, AuditLogListResponse
from app.features.audit.service import list_audit_logs, get_audit_log
from app.features.users.dependencies import get_current_admin_user
from app.features.users.models import User


router = APIRouter(tags=["audit"])


@router.get("/", response_model=AuditLogListResponse)
async def list_audit_logs_endpoint(
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    actor_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
):
    """List audit logs with optional filtering (admin only)."""
    if start_date and end_date and start_date > end_date:
        raise InvalidInputError("start_date must be before end_date")

    logs, total = await list_audit_logs(
        db,
        skip=skip,
        limit=limit,
        action=action,
        entity_type=entity_type,
        actor_id=actor_id,
        organization_id=organization_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=(skip // limit) + 1,
        page_size=limit,
        pages=(total + limit - 1) // limit,
    )


@router.get("/{audit_log_id}", response_model=AuditLogResponse)
async def get_audit_log_endpoint(
    audit_log_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get a single audit log entry (admin only)."""
    return await get_audit_log(db, audit_log_id)
