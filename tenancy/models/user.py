from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import String, JSON, Enum, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import Base, TimestampMixin, TenantOwnedMixin
from tenancy.models.role import Role


class UserStatus(str, PyEnum):
    ACTIVE = "active"
    DELETED = "deleted"


class User(Base, TimestampMixin, TenantOwnedMixin):
    """
    Membership profile of an identity within its tenant.

    id is the identity provider uid. The role and resource_permissions
    mirror the identity's claims; the claims are authoritative for request
    authorization, this document is what the tenant's members list and the
    audit trail refer to.

    tenant_id never changes once set. Removal is a soft delete
    (status=deleted plus deleted_at); the row is purged only by the
    retention sweep.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, length=32, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=Role.MEMBER,
    )
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=UserStatus.ACTIVE,
    )
    # Guest only: collection -> allowed document ids
    resource_permissions: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_users_tenant_email", "tenant_id", "email"),
        Index("ix_users_tenant_status", "tenant_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', tenant_id='{self.tenant_id}', role={self.role.value})>"
