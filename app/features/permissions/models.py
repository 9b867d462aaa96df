"""
Role and Permission models for the global RBAC catalog.

Roles and permissions are platform-wide, not per tenant. A member's role in
an organization grants the permissions mapped to it in role_permissions.
Permissions are keyed by their string id (e.g. "org.update") so new ones can
be added from the admin API without a code change.
"""
from sqlalchemy import String, ForeignKey, Table, Column, Text, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


# ============================================================================
# Association Table
# ============================================================================

# Role-Permission relationship; composite key (role_id, permission_id)
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(100), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    Permission catalog entry.

    Examples:
    - id="org.update", category="Organization"
    - id="billing.view", category="Billing"
    """
    __tablename__ = "permissions"

    # The permission key doubles as the primary key
    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)

    roles: Mapped[list["Role"]] = relationship(
        "Role",
        secondary=role_permissions,
        back_populates="permissions",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Permission(id={self.id!r}, category={self.category!r})>"


class Role(Base, TimestampMixin):
    """
    Global role grouping permissions.

    Owner, Admin and Member are seeded; platform admins may add more.
    """
    __tablename__ = "roles"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        back_populates="roles",
        lazy="selectin",
        order_by="Permission.id",
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"
