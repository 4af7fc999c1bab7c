import pytest

from tenancy.core.exceptions import (
    AccessDenied,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    SecurityViolation,
)
from tenancy.models.audit_log import AuditAction
from tenancy.models.role import Role
from tenancy.models.user import UserStatus
from tenancy.repositories.audit_repository import AuditRepository
from tenancy.repositories.document_store import DocumentStore, Filter
from tenancy.repositories.tenant_store import PrivilegedStore, TenantScopedStore


class LeakyDocumentStore(DocumentStore):
    """Store whose query silently drops the tenant filter"""

    def query(self, collection, filters=(), **kwargs):
        filters = [f for f in filters if f.field != "tenant_id"]
        return super().query(collection, filters, **kwargs)


class FailingAuditRepository(AuditRepository):
    def record(self, *args, **kwargs):
        raise RuntimeError("audit store unavailable")


@pytest.fixture
def two_tenants(world):
    """Two independent tenants, each with one admin"""
    uid_a = world.signup("alice@example.com")
    uid_b = world.signup("bob@example.com")
    return world.session(uid_a), world.session(uid_b)


class TestScopedStoreConstruction:
    def test_requires_tenant_id(self, world):
        with pytest.raises(ValueError):
            TenantScopedStore(world.store, "", "uid-1", world.audit)

    def test_requires_user_id(self, world):
        with pytest.raises(ValueError):
            TenantScopedStore(world.store, "tenant-1", "", world.audit)


class TestScopedCreate:
    def test_create_stamps_tenant_and_actor(self, world, two_tenants):
        """Created documents carry the context tenant and creator"""
        ctx_a, _ = two_tenants
        store = world.scoped(ctx_a)

        invitation_token = "a" * 64
        invitation = store.create(
            "invitations",
            {
                "email": "new@example.com",
                "role": Role.MEMBER,
                "invited_by": ctx_a.user_id,
                "invited_at": world.clock(),
                "expires_at": world.clock(),
                "invite_token": invitation_token,
            },
        )

        assert invitation.tenant_id == ctx_a.tenant_id
        assert invitation.created_by == ctx_a.user_id
        assert invitation.updated_by == ctx_a.user_id
        assert invitation.created_at is not None

    def test_create_with_same_tenant_id_allowed(self, world, two_tenants):
        ctx_a, _ = two_tenants
        store = world.scoped(ctx_a)

        invitation = store.create(
            "invitations",
            {
                "tenant_id": ctx_a.tenant_id,
                "email": "same@example.com",
                "role": Role.VIEWER,
                "invited_by": ctx_a.user_id,
                "invited_at": world.clock(),
                "expires_at": world.clock(),
                "invite_token": "b" * 64,
            },
        )
        assert invitation.tenant_id == ctx_a.tenant_id

    def test_create_with_foreign_tenant_id_rejected(self, world, two_tenants):
        """A caller can never write into another tenant"""
        ctx_a, ctx_b = two_tenants
        store = world.scoped(ctx_a)

        with pytest.raises(PermissionDenied):
            store.create(
                "invitations",
                {
                    "tenant_id": ctx_b.tenant_id,
                    "email": "x@example.com",
                    "role": Role.MEMBER,
                    "invited_by": ctx_a.user_id,
                    "invited_at": world.clock(),
                    "expires_at": world.clock(),
                    "invite_token": "c" * 64,
                },
            )

    def test_audit_logs_are_append_only(self, world, two_tenants):
        ctx_a, _ = two_tenants
        store = world.scoped(ctx_a)

        with pytest.raises(PermissionDenied):
            store.create(
                "audit_logs",
                {"user_id": ctx_a.user_id, "action": AuditAction.ROLE_UPDATED, "collection": "x"},
            )

    def test_non_tenant_collection_rejected(self, world, two_tenants):
        ctx_a, _ = two_tenants
        with pytest.raises(InvalidArgument):
            world.scoped(ctx_a).query("rate_limits")


class TestScopedQuery:
    def test_query_returns_only_own_tenant(self, world, two_tenants):
        ctx_a, ctx_b = two_tenants

        users_a = world.scoped(ctx_a).query("users")
        users_b = world.scoped(ctx_b).query("users")

        assert [u.id for u in users_a] == [ctx_a.user_id]
        assert [u.id for u in users_b] == [ctx_b.user_id]

    def test_query_applies_caller_filters(self, world, two_tenants):
        ctx_a, _ = two_tenants
        world.add_member(ctx_a.tenant_id, "viewer@example.com", Role.VIEWER)
        store = world.scoped(ctx_a)

        viewers = store.query("users", [Filter("role", "==", Role.VIEWER)])

        assert [u.email for u in viewers] == ["viewer@example.com"]
        assert store.count("users") == 2

    def test_leaked_result_raises_security_violation(self, world, two_tenants):
        """A foreign document in the results is fatal and audited"""
        ctx_a, _ = two_tenants
        leaky = LeakyDocumentStore(world.db)
        store = TenantScopedStore(leaky, ctx_a.tenant_id, ctx_a.user_id, AuditRepository(leaky))

        with pytest.raises(SecurityViolation):
            store.query("users")

        assert AuditAction.SECURITY_VIOLATION in world.audit_actions(ctx_a.tenant_id)

    def test_violation_raised_even_when_audit_write_fails(self, world, two_tenants):
        ctx_a, _ = two_tenants
        leaky = LeakyDocumentStore(world.db)
        store = TenantScopedStore(
            leaky, ctx_a.tenant_id, ctx_a.user_id, FailingAuditRepository(leaky)
        )

        with pytest.raises(SecurityViolation):
            store.query("users")

    def test_count_runs_the_isolation_check(self, world, two_tenants):
        ctx_a, _ = two_tenants
        leaky = LeakyDocumentStore(world.db)
        store = TenantScopedStore(leaky, ctx_a.tenant_id, ctx_a.user_id, AuditRepository(leaky))

        with pytest.raises(SecurityViolation):
            store.count("users")


class TestScopedGetById:
    def test_get_own_document(self, world, two_tenants):
        ctx_a, _ = two_tenants
        user = world.scoped(ctx_a).get_by_id("users", ctx_a.user_id)
        assert user.email == "alice@example.com"

    def test_missing_document(self, world, two_tenants):
        ctx_a, _ = two_tenants
        with pytest.raises(NotFound):
            world.scoped(ctx_a).get_by_id("users", "does-not-exist")

    def test_foreign_document_denied_and_audited(self, world, two_tenants):
        """Reading another tenant's record by id is denied and recorded"""
        ctx_a, ctx_b = two_tenants

        with pytest.raises(AccessDenied):
            world.scoped(ctx_a).get_by_id("users", ctx_b.user_id)

        assert AuditAction.ACCESS_DENIED in world.audit_actions(ctx_a.tenant_id)
        assert AuditAction.ACCESS_DENIED not in world.audit_actions(ctx_b.tenant_id)

    def test_access_denied_is_permission_denied(self):
        assert issubclass(AccessDenied, PermissionDenied)

    def test_get_by_ids_filters_foreign_documents(self, world, two_tenants):
        ctx_a, ctx_b = two_tenants
        results = world.scoped(ctx_a).get_by_ids(
            "users", [ctx_a.user_id, ctx_b.user_id, "missing"]
        )
        assert [u.id for u in results] == [ctx_a.user_id]


class TestScopedUpdateDelete:
    def test_update_drops_protected_fields(self, world, two_tenants):
        """tenant_id, created_by and created_at cannot be overwritten"""
        ctx_a, ctx_b = two_tenants
        store = world.scoped(ctx_a)
        before = store.get_by_id("users", ctx_a.user_id)
        created_at = before.created_at
        created_by = before.created_by

        updated = store.update(
            "users",
            ctx_a.user_id,
            {
                "display_name": "Alice A.",
                "tenant_id": ctx_b.tenant_id,
                "created_by": "mallory",
                "created_at": world.clock().replace(year=2000),
            },
        )

        assert updated.display_name == "Alice A."
        assert updated.tenant_id == ctx_a.tenant_id
        assert updated.created_by == created_by
        assert updated.created_at == created_at
        assert updated.updated_by == ctx_a.user_id

    def test_update_foreign_document_denied(self, world, two_tenants):
        ctx_a, ctx_b = two_tenants
        with pytest.raises(AccessDenied):
            world.scoped(ctx_a).update("users", ctx_b.user_id, {"display_name": "hijacked"})

        assert world.store.get("users", ctx_b.user_id).display_name != "hijacked"

    def test_soft_delete_sets_flags(self, world, two_tenants):
        ctx_a, _ = two_tenants
        uid = world.add_member(ctx_a.tenant_id, "gone@example.com")
        store = world.scoped(ctx_a)

        store.delete("users", uid)

        user = world.store.get("users", uid)
        assert user is not None
        assert user.deleted is True
        assert user.deleted_at is not None
        assert user.deleted_by == ctx_a.user_id

    def test_hard_delete_requires_privilege(self, world, two_tenants):
        ctx_a, _ = two_tenants
        uid = world.add_member(ctx_a.tenant_id, "keep@example.com")

        with pytest.raises(PermissionDenied):
            world.scoped(ctx_a).delete("users", uid, hard=True)

        assert world.store.get("users", uid) is not None

    def test_privileged_scoped_view_can_hard_delete(self, world, two_tenants):
        ctx_a, _ = two_tenants
        uid = world.add_member(ctx_a.tenant_id, "purge@example.com")

        world.privileged.scoped(ctx_a.tenant_id).delete("users", uid, hard=True)

        assert world.store.get("users", uid) is None

    def test_update_tenant_keeps_identity(self, world, two_tenants):
        ctx_a, _ = two_tenants
        tenant = world.scoped(ctx_a).update_tenant({"name": "Renamed", "id": "other"})
        assert tenant.id == ctx_a.tenant_id
        assert tenant.name == "Renamed"


class TestPrivilegedStore:
    def test_create_requires_tenant_id_for_scoped_collections(self, world):
        with pytest.raises(InvalidArgument):
            world.privileged.create(
                "users", {"email": "x@example.com", "status": UserStatus.ACTIVE}
            )

    def test_audit_logs_cannot_be_updated_or_deleted(self, world, two_tenants):
        ctx_a, _ = two_tenants
        entry = world.privileged.query(
            "audit_logs", [Filter("tenant_id", "==", ctx_a.tenant_id)], limit=1
        )[0]

        with pytest.raises(PermissionDenied):
            world.privileged.update("audit_logs", entry.id, {"changes": {}})
        with pytest.raises(PermissionDenied):
            world.privileged.hard_delete("audit_logs", entry.id)

    def test_query_crosses_tenants(self, world, two_tenants):
        assert len(world.privileged.query("users")) == 2
