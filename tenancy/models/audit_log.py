"""Append-only audit trail."""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import String, JSON, Enum, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import Base, new_id, utcnow


class AuditAction(str, PyEnum):
    TENANT_CREATED = "TENANT_CREATED"
    USER_CREATED = "USER_CREATED"
    OWNER_ASSIGNED = "OWNER_ASSIGNED"
    INVITATION_CREATED = "INVITATION_CREATED"
    INVITATION_ACCEPTED = "INVITATION_ACCEPTED"
    INVITATION_REVOKED = "INVITATION_REVOKED"
    ROLE_UPDATED = "ROLE_UPDATED"
    OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"
    GUEST_PERMISSIONS_UPDATED = "GUEST_PERMISSIONS_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_HARD_DELETED = "USER_HARD_DELETED"
    ACCESS_DENIED = "ACCESS_DENIED"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"


class AuditLog(Base):
    """
    One audit record per state transition.

    The core only ever inserts rows here. For multi-write transitions that
    are not atomic across the claims store and the document store, this
    table is the reconciliation record.
    """

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)  # actor
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    collection: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    changes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (Index("ix_audit_logs_tenant_timestamp", "tenant_id", "timestamp"),)
