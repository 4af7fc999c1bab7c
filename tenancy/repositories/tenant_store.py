"""
Tenant-Scoped Data Access Layer.

The underlying store has no row-level security, so isolation is enforced
here at every entry point, with checks both before (tenant filter, tenant
stamping) and after (result assertion) each operation.

- TenantScopedStore: restricted posture. Tenant context comes from a
  verified session; every read and write is confined to that tenant.
- PrivilegedStore: elevated posture for system code (account provisioning,
  retention sweeps). It can act across tenants and hard delete.
"""

from typing import Sequence

from tenancy.core.exceptions import (
    AccessDenied,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    SecurityViolation,
)
from tenancy.logger import get_logger
from tenancy.models.audit_log import AuditAction
from tenancy.models.base import Base, utcnow
from tenancy.models.tenant import Tenant
from tenancy.repositories.audit_repository import AuditRepository
from tenancy.repositories.document_store import (
    APPEND_ONLY_COLLECTIONS,
    DocumentStore,
    Filter,
)

logger = get_logger(__name__)

# Fields a caller can never overwrite through update()
PROTECTED_FIELDS = frozenset({"id", "tenant_id", "created_by", "created_at"})

SYSTEM_ACTOR = "system"


class TenantScopedStore:
    """
    Database wrapper with enforced tenant isolation.

    Usage:
        store = TenantScopedStore(DocumentStore(db), session.tenant_id, session.user_id, audit)
        users = store.query("users", [Filter("status", "==", "active")])
    """

    def __init__(
        self,
        store: DocumentStore,
        tenant_id: str,
        user_id: str,
        audit: AuditRepository,
        allow_hard_delete: bool = False,
    ):
        if not tenant_id:
            raise ValueError("TenantScopedStore: tenant_id is required")
        if not user_id:
            raise ValueError("TenantScopedStore: user_id is required")

        self.store = store
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.audit = audit
        self._allow_hard_delete = allow_hard_delete

    def _require_scoped(self, collection: str) -> None:
        if not self.store.is_tenant_scoped(collection):
            raise InvalidArgument(f"Collection '{collection}' is not tenant-scoped")

    def _require_writable(self, collection: str) -> None:
        self._require_scoped(collection)
        if collection in APPEND_ONLY_COLLECTIONS:
            raise PermissionDenied(f"Collection '{collection}' is append-only")

    def create(self, collection: str, data: dict) -> Base:
        """
        Create document with stamped tenant_id, creator and timestamps.

        Raises:
            PermissionDenied: If data carries a different tenant_id
        """
        self._require_writable(collection)

        if data.get("tenant_id") and data["tenant_id"] != self.tenant_id:
            raise PermissionDenied("Cannot specify different tenant_id")

        document = {
            **data,
            "tenant_id": self.tenant_id,
            "created_by": self.user_id,
            "updated_by": self.user_id,
        }
        return self.store.create(collection, document)

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        limit: int | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Base]:
        """
        Query documents of the context tenant.

        The tenant filter is always applied first. Every returned document is
        then checked again; a document of another tenant means the filter was
        bypassed somewhere below us, which is fatal.

        Raises:
            SecurityViolation: If any result belongs to another tenant
        """
        self._require_scoped(collection)

        constraints = [Filter("tenant_id", "==", self.tenant_id), *filters]
        results = self.store.query(
            collection, constraints, limit=limit, order_by=order_by, descending=descending
        )

        for document in results:
            if document.tenant_id != self.tenant_id:
                logger.critical(
                    "security_violation_detected",
                    collection=collection,
                    document_id=document.id,
                    document_tenant=document.tenant_id,
                    session_tenant=self.tenant_id,
                    user_id=self.user_id,
                )
                self.audit.record_security_event(
                    AuditAction.SECURITY_VIOLATION,
                    session_tenant_id=self.tenant_id,
                    actor_id=self.user_id,
                    collection=collection,
                    document_id=document.id,
                    document_tenant_id=document.tenant_id,
                    source="TenantScopedStore.query",
                )
                raise SecurityViolation(
                    f"Document {document.id} in {collection} belongs to a different tenant"
                )

        return results

    def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        # Rows are loaded so each one passes the tenant check in query
        return len(self.query(collection, filters))

    def get_by_id(self, collection: str, doc_id: str) -> Base:
        """
        Get document by id with tenant verification.

        Raises:
            NotFound: If the document does not exist
            AccessDenied: If it belongs to another tenant (audited)
        """
        self._require_scoped(collection)
        if not doc_id:
            raise InvalidArgument("Document id is required")

        document = self.store.get(collection, doc_id)
        if document is None:
            raise NotFound(f"Document not found: {collection}/{doc_id}")

        if document.tenant_id != self.tenant_id:
            logger.error(
                "cross_tenant_access_attempt",
                collection=collection,
                document_id=doc_id,
                document_tenant=document.tenant_id,
                session_tenant=self.tenant_id,
                user_id=self.user_id,
            )
            self.audit.record_security_event(
                AuditAction.ACCESS_DENIED,
                session_tenant_id=self.tenant_id,
                actor_id=self.user_id,
                collection=collection,
                document_id=doc_id,
                document_tenant_id=document.tenant_id,
                source="TenantScopedStore.get_by_id",
            )
            raise AccessDenied(
                f"Access denied: {collection}/{doc_id} belongs to a different tenant"
            )

        return document

    def get_by_ids(self, collection: str, doc_ids: Sequence[str]) -> list[Base]:
        """Fetch several documents; only those of the context tenant are returned."""
        self._require_scoped(collection)
        results = []
        for doc_id in doc_ids:
            document = self.store.get(collection, doc_id)
            if document is not None and document.tenant_id == self.tenant_id:
                results.append(document)
        return results

    def update(self, collection: str, doc_id: str, updates: dict) -> Base:
        """Update a document after re-verifying tenant ownership."""
        self._require_writable(collection)
        self.get_by_id(collection, doc_id)

        safe_updates = {k: v for k, v in updates.items() if k not in PROTECTED_FIELDS}
        safe_updates["updated_by"] = self.user_id
        return self.store.update(collection, doc_id, safe_updates)

    def delete(self, collection: str, doc_id: str, hard: bool = False) -> None:
        """
        Delete a document; soft delete (flag + timestamp) unless hard=True.

        Raises:
            PermissionDenied: If hard=True outside the privileged posture
        """
        self._require_writable(collection)
        if hard and not self._allow_hard_delete:
            raise PermissionDenied("Hard delete is reserved for privileged callers")

        self.get_by_id(collection, doc_id)

        if hard:
            self.store.delete(collection, doc_id)
            return

        self.store.update(
            collection,
            doc_id,
            {
                "deleted": True,
                "deleted_at": utcnow(),
                "deleted_by": self.user_id,
                "updated_by": self.user_id,
            },
        )

    def get_tenant(self) -> Tenant:
        """The context tenant's own document."""
        tenant = self.store.get("tenants", self.tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found")
        return tenant

    def update_tenant(self, updates: dict) -> Tenant:
        """Update the context tenant's own document (protected fields dropped)."""
        self.get_tenant()
        safe_updates = {k: v for k, v in updates.items() if k not in PROTECTED_FIELDS}
        safe_updates["updated_by"] = self.user_id
        return self.store.update("tenants", self.tenant_id, safe_updates)


class PrivilegedStore:
    """
    Elevated posture for system-trigger code.

    Acts across tenants without a session. Only provisioning, ownership
    elevation and maintenance sweeps construct one.
    """

    def __init__(
        self,
        store: DocumentStore,
        audit: AuditRepository,
        actor_id: str = SYSTEM_ACTOR,
    ):
        self.store = store
        self.audit = audit
        self.actor_id = actor_id

    def scoped(self, tenant_id: str) -> TenantScopedStore:
        """A tenant-scoped view that is also allowed to hard delete."""
        return TenantScopedStore(
            self.store, tenant_id, self.actor_id, self.audit, allow_hard_delete=True
        )

    def get(self, collection: str, doc_id: str) -> Base | None:
        return self.store.get(collection, doc_id)

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        limit: int | None = None,
        order_by: str | None = None,
    ) -> list[Base]:
        return self.store.query(collection, filters, limit=limit, order_by=order_by)

    def create(self, collection: str, data: dict) -> Base:
        if self.store.is_tenant_scoped(collection) and not data.get("tenant_id"):
            raise InvalidArgument(f"tenant_id is required for {collection}")
        return self.store.create(collection, data)

    def set(self, collection: str, doc_id: str, data: dict) -> Base:
        if self.store.is_tenant_scoped(collection) and not data.get("tenant_id"):
            raise InvalidArgument(f"tenant_id is required for {collection}")
        return self.store.set(collection, doc_id, data)

    def update(self, collection: str, doc_id: str, updates: dict) -> Base:
        if collection in APPEND_ONLY_COLLECTIONS:
            raise PermissionDenied(f"Collection '{collection}' is append-only")
        return self.store.update(collection, doc_id, updates)

    def hard_delete(self, collection: str, doc_id: str) -> bool:
        if collection in APPEND_ONLY_COLLECTIONS:
            raise PermissionDenied(f"Collection '{collection}' is append-only")
        return self.store.delete(collection, doc_id)
