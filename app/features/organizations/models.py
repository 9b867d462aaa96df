"""
Organization and membership models.

Organizations are tenants. A user joins an organization through exactly one
OrganizationMember row, which carries the user's single role in that tenant.
Both tables are soft-deleted; uniqueness only applies to live rows.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Boolean, Enum as SQLEnum, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin, generate_ulid, utcnow


class OrgStatus(str, enum.Enum):
    """Lifecycle status of an organization."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"


class Organization(Base, TimestampMixin, SoftDeleteMixin):
    """
    Organization (tenant) model.

    The slug is unique among non-deleted organizations, so a slug frees up
    again once its organization is deleted.
    """
    __tablename__ = "organizations"
    __table_args__ = (
        Index(
            "uq_organizations_slug_active",
            "slug",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[OrgStatus] = mapped_column(
        SQLEnum(OrgStatus),
        default=OrgStatus.ACTIVE,
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r}, slug={self.slug!r})>"


class OrganizationMember(Base, TimestampMixin, SoftDeleteMixin):
    """
    Membership of one user in one organization with exactly one role.

    Deleting the organization or the user cascades here; deleting a role that
    is still referenced is refused by the database (RESTRICT).
    """
    __tablename__ = "organization_members"
    __table_args__ = (
        Index(
            "uq_organization_members_org_user_active",
            "organization_id",
            "user_id",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    organization: Mapped["Organization"] = relationship(
        "Organization",
        lazy="selectin"
    )
    user: Mapped["User"] = relationship(  # type: ignore
        "User",
        lazy="selectin"
    )
    role: Mapped["Role"] = relationship("Role", lazy="selectin")  # type: ignore

    def __repr__(self) -> str:
        return (
            f"<OrganizationMember(id={self.id}, org_id={self.organization_id}, "
            f"user_id={self.user_id}, role_id={self.role_id})>"
        )
