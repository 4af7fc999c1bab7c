"""Tenant model for multi-tenant isolation."""

from enum import Enum as PyEnum

from sqlalchemy import String, JSON, Enum
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import Base, TimestampMixin


class TenantStatus(str, PyEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class Tenant(Base, TimestampMixin):
    """
    Multi-tenant isolation boundary.

    A tenant is one organization. Every user belongs to exactly one tenant
    and every tenant-owned record carries its tenant_id.

    owner_id stays null until an explicit elevation outside the self-service
    flow; afterwards it changes only through ownership transfer.

    settings holds:
    - max_users: seat limit enforced on invitation
    - plan: subscription plan name
    - features: enabled feature flags
    - billing_email
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[TenantStatus] = mapped_column(
        Enum(TenantStatus, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TenantStatus.ACTIVE,
    )
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    @property
    def max_users(self) -> int | None:
        return (self.settings or {}).get("max_users")

    def __repr__(self) -> str:
        return f"<Tenant(id='{self.id}', name='{self.name}', owner_id={self.owner_id})>"
