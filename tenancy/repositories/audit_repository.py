"""Repository for the append-only audit trail."""

from enum import Enum

from tenancy.logger import get_logger
from tenancy.models.audit_log import AuditLog, AuditAction
from tenancy.repositories.document_store import DocumentStore

logger = get_logger(__name__)


class AuditRepository:
    """Writes audit records. The only writer of the audit_logs collection."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def record(
        self,
        tenant_id: str,
        actor_id: str,
        action: AuditAction,
        collection: str,
        document_id: str | None,
        changes: dict | None = None,
    ) -> AuditLog:
        """
        Append one audit entry.

        Args:
            tenant_id: Tenant the transition belongs to
            actor_id: uid of the caller (or "system")
            action: What happened
            collection: Affected collection
            document_id: Affected document
            changes: before/after delta, JSON-serializable

        Returns:
            The stored AuditLog
        """
        return self.store.create(
            "audit_logs",
            {
                "tenant_id": tenant_id,
                "user_id": actor_id,
                "action": action,
                "collection": collection,
                "document_id": document_id,
                "changes": _jsonable(changes or {}),
            },
        )

    def record_security_event(
        self,
        action: AuditAction,
        session_tenant_id: str,
        actor_id: str,
        collection: str,
        document_id: str,
        document_tenant_id: str | None,
        source: str,
    ) -> None:
        """
        Write a security audit record synchronously.

        A failure here is logged and does not replace the error the caller
        is about to raise.
        """
        try:
            self.record(
                tenant_id=session_tenant_id,
                actor_id=actor_id,
                action=action,
                collection=collection,
                document_id=document_id,
                changes={
                    "attempted_tenant_id": document_tenant_id,
                    "session_tenant_id": session_tenant_id,
                    "severity": "CRITICAL",
                    "source": source,
                },
            )
        except Exception as exc:
            self.store.db.rollback()
            logger.error(
                "security_audit_write_failed",
                action=action.value,
                collection=collection,
                document_id=document_id,
                error=str(exc),
            )


def _jsonable(value):
    """Convert datetimes and enums so the delta can be stored as JSON."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
