"""Invitation model: a time-boxed, single-use offer to join a tenant."""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import String, JSON, Enum, DateTime, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import Base, TimestampMixin, TenantOwnedMixin, new_id
from tenancy.models.role import Role


class InvitationStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


class Invitation(Base, TimestampMixin, TenantOwnedMixin):
    """
    Pending offer for an email address to join a tenant with a role.

    Lifecycle: pending -> accepted (token_used flips permanently), or
    pending -> expired / revoked. At most one pending invitation exists per
    (tenant_id, email); the invitation service enforces it.
    """

    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, length=32, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    invited_by: Mapped[str] = mapped_column(String(64), nullable=False)
    invited_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[InvitationStatus] = mapped_column(
        Enum(
            InvitationStatus,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=InvitationStatus.PENDING,
    )
    invite_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    invite_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    token_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resource_permissions: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_invitations_tenant_email_status", "tenant_id", "email", "status"),
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def __repr__(self) -> str:
        return (
            f"<Invitation(id='{self.id}', tenant_id='{self.tenant_id}', "
            f"email='{self.email}', status={self.status.value})>"
        )
