"""Generic collection-scoped document store over SQLAlchemy."""

from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import inspect, select, func
from sqlalchemy.orm import Session

from tenancy.core.exceptions import InvalidArgument, NotFound
from tenancy.models.base import Base
from tenancy.models.tenant import Tenant
from tenancy.models.user import User
from tenancy.models.invitation import Invitation
from tenancy.models.audit_log import AuditLog
from tenancy.models.rate_limit import RateLimitRecord

# Logical collection name -> ORM model
COLLECTIONS: dict[str, type[Base]] = {
    "tenants": Tenant,
    "users": User,
    "invitations": Invitation,
    "audit_logs": AuditLog,
    "rate_limits": RateLimitRecord,
}

# Collections the core only ever appends to
APPEND_ONLY_COLLECTIONS = frozenset({"audit_logs"})

# Upper bound for a single batch write
MAX_BATCH_SIZE = 500

_OPERATORS = {
    "==": lambda column, value: column == value,
    "!=": lambda column, value: column != value,
    "<": lambda column, value: column < value,
    "<=": lambda column, value: column <= value,
    ">": lambda column, value: column > value,
    ">=": lambda column, value: column >= value,
    "in": lambda column, value: column.in_(value),
    "not-in": lambda column, value: column.not_in(value),
}


@dataclass(frozen=True)
class Filter:
    """A single field comparison, e.g. Filter("status", "==", "active")."""

    field: str
    op: str
    value: Any


class DocumentStore:
    """
    Collection-scoped create/read/query/update/delete.

    Every write commits on its own; there is no transaction spanning
    several calls. Timestamps are assigned by the models, not the caller.
    This class performs no tenant filtering of any kind: application code
    reaches it only through TenantScopedStore or PrivilegedStore.
    """

    def __init__(self, db: Session):
        self.db = db

    def model_for(self, collection: str) -> type[Base]:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise InvalidArgument(f"Unknown collection: {collection}")

    def column_names(self, collection: str) -> set[str]:
        return {column.key for column in inspect(self.model_for(collection)).column_attrs}

    def is_tenant_scoped(self, collection: str) -> bool:
        return "tenant_id" in self.column_names(collection)

    def _column(self, model: type[Base], field: str):
        if field not in {column.key for column in inspect(model).column_attrs}:
            raise InvalidArgument(f"Unknown field '{field}' for {model.__tablename__}")
        return getattr(model, field)

    def _check_fields(self, collection: str, data: dict) -> None:
        unknown = set(data) - self.column_names(collection)
        if unknown:
            raise InvalidArgument(
                f"Unknown field(s) for {collection}: {', '.join(sorted(unknown))}"
            )

    def _build_query(self, collection: str, filters: Sequence[Filter]):
        model = self.model_for(collection)
        stmt = select(model)
        for f in filters:
            try:
                operator = _OPERATORS[f.op]
            except KeyError:
                raise InvalidArgument(f"Unsupported filter operator: {f.op}")
            stmt = stmt.where(operator(self._column(model, f.field), f.value))
        return model, stmt

    def create(self, collection: str, data: dict) -> Base:
        """Insert a new document and return it with server-assigned fields."""
        self._check_fields(collection, data)
        document = self.model_for(collection)(**data)
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        return document

    def set(self, collection: str, doc_id: str, data: dict) -> Base:
        """
        Write a document under a caller-chosen id, replacing any existing one.

        Fields not present in ``data`` revert to their defaults.
        """
        self._check_fields(collection, data)
        model = self.model_for(collection)
        existing = self.db.get(model, doc_id)
        if existing is not None:
            self.db.delete(existing)
            self.db.flush()
        pk_name = inspect(model).primary_key[0].key
        document = model(**{**data, pk_name: doc_id})
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        return document

    def get(self, collection: str, doc_id: str) -> Base | None:
        return self.db.get(self.model_for(collection), doc_id)

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        limit: int | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Base]:
        """Return documents matching every filter (logical AND)."""
        model, stmt = self._build_query(collection, filters)
        if order_by:
            column = self._column(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.scalars(stmt).all())

    def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        _, stmt = self._build_query(collection, filters)
        return self.db.scalar(select(func.count()).select_from(stmt.subquery()))

    def update(self, collection: str, doc_id: str, updates: dict) -> Base:
        """
        Apply a partial update.

        Raises:
            NotFound: If the document does not exist
        """
        self._check_fields(collection, updates)
        document = self.get(collection, doc_id)
        if document is None:
            raise NotFound(f"Document not found: {collection}/{doc_id}")
        for key, value in updates.items():
            setattr(document, key, value)
        self.db.commit()
        self.db.refresh(document)
        return document

    def delete(self, collection: str, doc_id: str) -> bool:
        """Permanently remove a document. Returns False if it did not exist."""
        document = self.get(collection, doc_id)
        if document is None:
            return False
        self.db.delete(document)
        self.db.commit()
        return True

    def batch_delete(self, collection: str, doc_ids: Sequence[str]) -> int:
        """
        Permanently remove up to MAX_BATCH_SIZE documents in one commit.

        Raises:
            InvalidArgument: If more than MAX_BATCH_SIZE ids are given
        """
        if len(doc_ids) > MAX_BATCH_SIZE:
            raise InvalidArgument(f"Batch size is limited to {MAX_BATCH_SIZE} documents")
        model = self.model_for(collection)
        deleted = 0
        for doc_id in doc_ids:
            document = self.db.get(model, doc_id)
            if document is not None:
                self.db.delete(document)
                deleted += 1
        self.db.commit()
        return deleted
