"""
Invitation model.

An invitation offers one role in one organization to an email address. The
token is single-use: pending -> accepted, or pending -> expired.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, Enum as SQLEnum, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin, generate_ulid, utcnow, as_utc


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class Invitation(Base, TimestampMixin, SoftDeleteMixin):
    """
    Pending or processed invitation to join an organization.

    Revoked and declined invitations are soft-deleted. The (organization,
    email) and (organization, token) pairs are unique among live rows.
    """
    __tablename__ = "invitations"
    __table_args__ = (
        Index(
            "uq_invitations_org_email_active",
            "organization_id",
            "email",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
        Index(
            "uq_invitations_org_token_active",
            "organization_id",
            "token",
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
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=False
    )
    token: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[InvitationStatus] = mapped_column(
        SQLEnum(InvitationStatus),
        default=InvitationStatus.PENDING,
        nullable=False,
        index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Cleared when the inviter's account is deleted
    invited_by: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    organization: Mapped["Organization"] = relationship("Organization", lazy="selectin")  # type: ignore
    role: Mapped["Role"] = relationship("Role", lazy="selectin")  # type: ignore
    inviter: Mapped[Optional["User"]] = relationship("User", lazy="selectin")  # type: ignore

    @property
    def is_expired(self) -> bool:
        """Past expires_at, whatever the status column says."""
        return as_utc(self.expires_at) <= utcnow()

    def __repr__(self) -> str:
        return (
            f"<Invitation(id={self.id}, org_id={self.organization_id}, "
            f"email={self.email!r}, status={self.status.value})>"
        )
