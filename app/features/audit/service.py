"""
Audit logging helpers.

record_audit() adds the entry to the caller's session, so the entry commits
or rolls back together with the mutation it describes.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from fastapi import Request
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.features.audit.models import AuditLog
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


class AuditAction:
    CREATE_ORGANIZATION = "CREATE_ORGANIZATION"
    UPDATE_ORGANIZATION = "UPDATE_ORGANIZATION"
    DELETE_ORGANIZATION = "DELETE_ORGANIZATION"
    ADD_MEMBER = "ADD_MEMBER"
    UPDATE_MEMBER = "UPDATE_MEMBER"
    REMOVE_MEMBER = "REMOVE_MEMBER"
    TRANSFER_OWNERSHIP = "TRANSFER_OWNERSHIP"
    INVITE_MEMBER = "INVITE_MEMBER"
    REVOKE_INVITATION = "REVOKE_INVITATION"
    ACCEPT_INVITATION = "ACCEPT_INVITATION"
    DECLINE_INVITATION = "DECLINE_INVITATION"
    CREATE_ROLE = "CREATE_ROLE"
    UPDATE_ROLE = "UPDATE_ROLE"
    DELETE_ROLE = "DELETE_ROLE"
    UPDATE_ROLE_PERMISSIONS = "UPDATE_ROLE_PERMISSIONS"
    CREATE_PERMISSION = "CREATE_PERMISSION"
    DELETE_PERMISSION = "DELETE_PERMISSION"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"


def request_origin(request: Optional[Request]) -> Dict[str, Optional[str]]:
    """Client IP and user agent of a request, for audit entries."""
    if request is None:
        return {"ip_address": None, "user_agent": None}
    user_agent = request.headers.get("user-agent")
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": user_agent[:255] if user_agent else None,
    }


def record_audit(
    db: AsyncSession,
    actor_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: str,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """
    Stage an audit log entry in the current transaction.

    Args:
        db: Session of the mutation being audited
        actor_id: User performing the action (None for system actions)
        action: One of AuditAction
        entity_type: Type of the entity touched (e.g. "Role", "Invitation")
        entity_id: ID of the entity
        organization_id: Tenant context, if any
        details: JSON-serializable payload
        request: Incoming request, for IP and user agent
    """
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        organization_id=organization_id,
        details=details,
        **request_origin(request),
    )
    db.add(entry)

    log.info(
        "Audit: actor=%s action=%s entity=%s:%s org=%s",
        actor_id, action, entity_type, entity_id, organization_id
    )
    return entry


async def list_audit_logs(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 50,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    actor_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
) -> tuple[list[AuditLog], int]:
    """Filtered, newest-first page of audit entries plus the total match count."""
    stmt = select(AuditLog).outerjoin(User, User.id == AuditLog.actor_id)

    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if actor_id:
        stmt = stmt.where(AuditLog.actor_id == actor_id)
    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if start_date:
        stmt = stmt.where(AuditLog.created_at >= start_date)
    if end_date:
        stmt = stmt.where(AuditLog.created_at <= end_date)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                AuditLog.action.ilike(pattern),
                AuditLog.entity_type.ilike(pattern),
                AuditLog.entity_id.ilike(pattern),
                User.email.ilike(pattern),
                User.name.ilike(pattern),
            )
        )

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def get_audit_log(db: AsyncSession, audit_log_id: str) -> AuditLog:
    entry = await db.get(AuditLog, audit_log_id)
    if entry is None:
        raise NotFoundError("Audit log")
    return entry
