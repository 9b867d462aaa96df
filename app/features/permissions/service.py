"""
Role/Permission registry.

The catalog is global: roles and permissions are shared by every
organization. Mutations stage an audit entry in the same transaction.
"""
from typing import Iterable, List, Optional
from fastapi import Request
from sqlalchemy import select, delete, insert, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from app.features.audit.service import AuditAction, record_audit
from app.features.invitations.models import Invitation
from app.features.organizations.models import OrganizationMember
from app.features.permissions.constants import DEFAULT_PERMISSIONS, DEFAULT_ROLES, RoleName
from app.features.permissions.models import Permission, Role, role_permissions
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Reads
# ============================================================================

async def list_roles(db: AsyncSession) -> List[Role]:
    result = await db.execute(select(Role).order_by(Role.name))
    return list(result.scalars().all())


async def search_roles(db: AsyncSession, search: str) -> List[Role]:
    pattern = f"%{search.strip()}%"
    result = await db.execute(
        select(Role).where(or_(Role.name.ilike(pattern), Role.description.ilike(pattern))).order_by(Role.name)
    )
    return list(result.scalars().all())


async def list_permissions(db: AsyncSession, category: Optional[str] = None) -> List[Permission]:
    stmt = select(Permission)
    if category:
        stmt = stmt.where(Permission.category == category)
    result = await db.execute(stmt.order_by(Permission.category, Permission.id))
    return list(result.scalars().all())


async def get_role(db: AsyncSession, role_id: str) -> Role:
    """Get role by ID or raise NotFoundError."""
    role = await db.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role")
    return role


async def get_role_by_name(db: AsyncSession, name: str) -> Role:
    result = await db.execute(select(Role).where(Role.name == name))
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFoundError(f"Role '{name}'")
    return role


async def get_permissions_for_role(db: AsyncSession, role_id: str) -> List[str]:
    """Sorted permission keys granted to a role."""
    await get_role(db, role_id)
    result = await db.execute(
        select(role_permissions.c.permission_id)
        .where(role_permissions.c.role_id == role_id)
        .order_by(role_permissions.c.permission_id)
    )
    return list(result.scalars().all())


# ============================================================================
# Role-permission mapping
# ============================================================================

async def set_role_permissions(
    db: AsyncSession,
    role_id: str,
    permission_ids: Iterable[str],
    actor_id: Optional[str] = None,
    request: Optional[Request] = None,
) -> List[str]:
    """
    Replace the permission set of a role.

    Every id must exist in the catalog, otherwise nothing changes. The
    mapping ends up equal to ``permission_ids`` exactly (full replace).

    Returns:
        The new sorted permission keys

    Raises:
        NotFoundError: Unknown role
        InvalidInputError: One or more unknown permission ids
    """
    role = await get_role(db, role_id)
    requested = set(permission_ids)

    if requested:
        result = await db.execute(select(Permission.id).where(Permission.id.in_(requested)))
        missing = requested - set(result.scalars().all())
        if missing:
            raise InvalidInputError(f"Invalid permission IDs: {', '.join(sorted(missing))}")

    previous = set(await get_permissions_for_role(db, role_id))
    to_remove = previous - requested
    to_add = requested - previous

    try:
        if to_remove:
            await db.execute(
                delete(role_permissions).where(
                    role_permissions.c.role_id == role_id,
                    role_permissions.c.permission_id.in_(to_remove),
                )
            )
        if to_add:
            await db.execute(
                insert(role_permissions),
                [{"role_id": role_id, "permission_id": pid} for pid in sorted(to_add)],
            )

        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.UPDATE_ROLE_PERMISSIONS,
            entity_type="Role",
            entity_id=role_id,
            details={
                "role_name": role.name,
                "previous_permissions": sorted(previous),
                "new_permissions": sorted(requested),
            },
            request=request,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    # The selectin collection on the role is stale after the core statements
    await db.refresh(role, ["permissions"])

    log.info("Role %s permissions: +%d -%d", role.name, len(to_add), len(to_remove))
    return sorted(requested)


# ============================================================================
# Role CRUD
# ============================================================================

BUILTIN_ROLE_NAMES = frozenset(name.value for name in RoleName)


def is_builtin_role(role: Role) -> bool:
    """Owner, Admin and Member are found by name elsewhere; they cannot be renamed or deleted."""
    return role.name in BUILTIN_ROLE_NAMES


async def create_role(
    db: AsyncSession,
    name: str,
    description: Optional[str] = None,
    actor_id: Optional[str] = None,
    request: Optional[Request] = None,
) -> Role:
    role = Role(name=name, description=description)
    try:
        db.add(role)
        await db.flush()
        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.CREATE_ROLE,
            entity_type="Role",
            entity_id=role.id,
            details={"name": name},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Role with this name already exists")

    await db.refresh(role)
    return role


async def update_role(
    db: AsyncSession,
    role_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    actor_id: Optional[str] = None,
    request: Optional[Request] = None,
) -> Role:
    """
    Rename a role or change its description.

    Raises:
        ConflictError: Renaming a built-in role, or the new name is taken
    """
    role = await get_role(db, role_id)
    changes = {}
    if name is not None and name != role.name:
        if is_builtin_role(role):
            raise ConflictError(f"Built-in role '{role.name}' cannot be renamed", code="builtin_role")
        changes["name"] = {"from": role.name, "to": name}
        role.name = name
    if description is not None and description != role.description:
        changes["description"] = {"from": role.description, "to": description}
        role.description = description

    if not changes:
        return role

    try:
        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.UPDATE_ROLE,
            entity_type="Role",
            entity_id=role.id,
            details=changes,
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Role with this name already exists")

    await db.refresh(role)
    return role


async def role_reference_count(db: AsyncSession, role_id: str) -> int:
    """Live memberships plus live invitations that point at a role."""
    members = await db.execute(
        select(func.count(OrganizationMember.id)).where(
            OrganizationMember.role_id == role_id,
            OrganizationMember.deleted_at.is_(None),
        )
    )
    invitations = await db.execute(
        select(func.count(Invitation.id)).where(
            Invitation.role_id == role_id,
            Invitation.deleted_at.is_(None),
        )
    )
    return (members.scalar() or 0) + (invitations.scalar() or 0)


async def delete_role(
    db: AsyncSession,
    role_id: str,
    actor_id: Optional[str] = None,
    request: Optional[Request] = None,
) -> None:
    """
    Delete a role that nothing live references.

    Raises:
        ConflictError: Memberships or invitations still use the role. Rows
            that were soft-deleted also block it, through the RESTRICT key.
    """
    role = await get_role(db, role_id)
    if is_builtin_role(role):
        raise ConflictError(f"Built-in role '{role.name}' cannot be deleted", code="builtin_role")

    in_use = await role_reference_count(db, role_id)
    if in_use:
        raise ConflictError(f"Role is assigned to {in_use} member(s) or invitation(s)")

    try:
        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.DELETE_ROLE,
            entity_type="Role",
            entity_id=role.id,
            details={"name": role.name},
            request=request,
        )
        await db.delete(role)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Role is still referenced and cannot be deleted")

    log.info("Deleted role %s", role.name)


# ============================================================================
# Permission CRUD
# ============================================================================

async def create_permission(
    db: AsyncSession,
    permission_id: str,
    description: Optional[str] = None,
    category: Optional[str] = None,
    actor_id: Optional[str] = None,
    request: Optional[Request] = None,
) -> Permission:
    if await db.get(Permission, permission_id) is not None:
        raise ConflictError("Permission with this ID already exists")

    permission = Permission(id=permission_id, description=description, category=category)
    try:
        db.add(permission)
        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.CREATE_PERMISSION,
            entity_type="Permission",
            entity_id=permission_id,
            details={"category": category},
            request=request,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Permission with this ID already exists")

    await db.refresh(permission)
    return permission


async def delete_permission(
    db: AsyncSession,
    permission_id: str,
    actor_id: Optional[str] = None,
    request: Optional[Request] = None,
) -> None:
    """Delete a permission along with its role mappings."""
    permission = await db.get(Permission, permission_id)
    if permission is None:
        raise NotFoundError("Permission")

    try:
        record_audit(
            db,
            actor_id=actor_id,
            action=AuditAction.DELETE_PERMISSION,
            entity_type="Permission",
            entity_id=permission_id,
            request=request,
        )
        await db.delete(permission)
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# ============================================================================
# Seeding
# ============================================================================

async def seed_rbac(db: AsyncSession) -> dict:
    """
    Install the default permission catalog and roles.

    Idempotent. Missing permissions and roles are created; a role that has
    no permissions yet gets its default mapping. Existing mappings are left
    alone so edits made through the admin API survive restarts.

    Returns:
        Counts of what was created
    """
    created = {"permissions": 0, "roles": 0, "mappings": 0}

    existing_permissions = set((await db.execute(select(Permission.id))).scalars().all())
    for key, description, category in DEFAULT_PERMISSIONS:
        if key.value not in existing_permissions:
            db.add(Permission(id=key.value, description=description, category=category))
            created["permissions"] += 1
    await db.flush()

    for role_name, definition in DEFAULT_ROLES.items():
        result = await db.execute(select(Role).where(Role.name == role_name.value))
        role = result.scalar_one_or_none()
        if role is None:
            role = Role(name=role_name.value, description=definition["description"])
            db.add(role)
            await db.flush()
            created["roles"] += 1
            log.info("Created role %s", role.name)

        mapped = await db.execute(
            select(func.count()).select_from(role_permissions).where(role_permissions.c.role_id == role.id)
        )
        if mapped.scalar():
            continue

        keys = [key.value for key in definition["permissions"]]
        await db.execute(
            insert(role_permissions),
            [{"role_id": role.id, "permission_id": key} for key in keys],
        )
        created["mappings"] += len(keys)

    await db.commit()
    log.info(
        "RBAC seed: %d permissions, %d roles, %d mappings created",
        created["permissions"], created["roles"], created["mappings"]
    )
    return created
