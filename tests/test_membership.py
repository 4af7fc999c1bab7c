import pytest

from tenancy.core.exceptions import (
    AccessDenied,
    IncompleteSetup,
    InvalidArgument,
    NotFound,
    PermissionDenied,
)
from tenancy.models.audit_log import AuditAction
from tenancy.models.role import Role
from tenancy.models.user import UserStatus


@pytest.fixture
def team(world, owned_tenant):
    """Owner, one admin, one member and one guest in the same tenant"""
    tenant_id, owner_uid = owned_tenant
    return {
        "tenant_id": tenant_id,
        "owner": owner_uid,
        "admin": world.add_member(tenant_id, "admin@example.com", Role.ADMIN),
        "member": world.add_member(tenant_id, "member@example.com", Role.MEMBER),
        "guest": world.add_member(
            tenant_id, "guest@example.com", Role.GUEST, {"projects": ["p-1"]}
        ),
    }


class TestListMembers:
    def test_lists_active_members(self, world, team):
        ctx = world.session(team["member"])
        members = world.membership(ctx).list_members(ctx)
        assert {m.id for m in members} == {
            team["owner"],
            team["admin"],
            team["member"],
            team["guest"],
        }


class TestUpdateUserRole:
    def test_admin_changes_member_to_viewer(self, world, team):
        ctx = world.session(team["admin"])

        user = world.membership(ctx).update_user_role(ctx, team["member"], Role.VIEWER)

        assert user.role is Role.VIEWER
        assert world.identity.get_claims(team["member"]) == {
            "tenant_id": team["tenant_id"],
            "role": "viewer",
        }
        assert AuditAction.ROLE_UPDATED in world.audit_actions(team["tenant_id"])

    def test_change_takes_effect_on_next_session(self, world, team):
        """Session context reflects the claims store, not the old token"""
        owner = world.session(team["owner"])
        world.membership(owner).update_user_role(owner, team["member"], Role.VIEWER)

        assert world.session(team["member"]).role is Role.VIEWER

    def test_cannot_change_own_role(self, world, team):
        ctx = world.session(team["admin"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).update_user_role(ctx, team["admin"], Role.MEMBER)

    def test_member_cannot_change_roles(self, world, team):
        ctx = world.session(team["member"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).update_user_role(ctx, team["guest"], Role.VIEWER)

    def test_owner_role_cannot_be_changed(self, world, team):
        ctx = world.session(team["admin"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).update_user_role(ctx, team["owner"], Role.MEMBER)

    def test_cannot_promote_to_owner(self, world, team):
        ctx = world.session(team["owner"])
        with pytest.raises(PermissionDenied, match="ownership transfer"):
            world.membership(ctx).update_user_role(ctx, team["admin"], Role.OWNER)

    def test_admin_cannot_promote_to_admin(self, world, team):
        ctx = world.session(team["admin"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).update_user_role(ctx, team["member"], Role.ADMIN)

    def test_admin_cannot_demote_admin(self, world, team):
        tenant_id = team["tenant_id"]
        other_admin = world.add_member(tenant_id, "admin2@example.com", Role.ADMIN)
        ctx = world.session(team["admin"])

        with pytest.raises(PermissionDenied):
            world.membership(ctx).update_user_role(ctx, other_admin, Role.MEMBER)

    def test_owner_promotes_and_demotes_admin(self, world, team):
        ctx = world.session(team["owner"])
        service = world.membership(ctx)

        assert service.update_user_role(ctx, team["member"], Role.ADMIN).role is Role.ADMIN
        assert service.update_user_role(ctx, team["member"], Role.MEMBER).role is Role.MEMBER

    def test_unknown_role_rejected(self, world, team):
        ctx = world.session(team["owner"])
        with pytest.raises(InvalidArgument):
            world.membership(ctx).update_user_role(ctx, team["member"], "superuser")

    def test_foreign_target_denied(self, world, team):
        outsider = world.signup("outsider@example.com")
        ctx = world.session(team["owner"])

        with pytest.raises(AccessDenied):
            world.membership(ctx).update_user_role(ctx, outsider, Role.VIEWER)

    def test_same_role_is_noop(self, world, team):
        ctx = world.session(team["owner"])
        world.membership(ctx).update_user_role(ctx, team["member"], Role.MEMBER)
        assert AuditAction.ROLE_UPDATED not in world.audit_actions(team["tenant_id"])

    def test_becoming_guest_starts_with_empty_permissions(self, world, team):
        ctx = world.session(team["owner"])

        user = world.membership(ctx).update_user_role(ctx, team["member"], Role.GUEST)

        assert user.resource_permissions == {}
        assert world.identity.get_claims(team["member"])["resource_permissions"] == {}

    def test_leaving_guest_drops_permissions(self, world, team):
        ctx = world.session(team["owner"])

        user = world.membership(ctx).update_user_role(ctx, team["guest"], Role.VIEWER)

        assert user.resource_permissions is None
        assert "resource_permissions" not in world.identity.get_claims(team["guest"])


class TestTransferOwnership:
    def test_owner_transfers_to_admin(self, world, team):
        """Roles swap and owner_id moves; the old owner stays as admin"""
        ctx = world.session(team["owner"])

        tenant = world.membership(ctx).transfer_ownership(ctx, team["admin"])

        assert tenant.owner_id == team["admin"]
        assert world.identity.get_claims(team["admin"])["role"] == "owner"
        assert world.identity.get_claims(team["owner"])["role"] == "admin"
        assert world.store.get("users", team["admin"]).role is Role.OWNER
        assert world.store.get("users", team["owner"]).role is Role.ADMIN
        assert AuditAction.OWNERSHIP_TRANSFERRED in world.audit_actions(team["tenant_id"])

    def test_exactly_one_owner_after_transfer(self, world, team):
        ctx = world.session(team["owner"])
        world.membership(ctx).transfer_ownership(ctx, team["admin"])

        owners = [m for m in world.membership(ctx).list_members(ctx) if m.role is Role.OWNER]
        assert [m.id for m in owners] == [team["admin"]]

    def test_admin_cannot_transfer(self, world, team):
        ctx = world.session(team["admin"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).transfer_ownership(ctx, team["member"])

    def test_target_must_be_admin(self, world, team):
        ctx = world.session(team["owner"])
        with pytest.raises(InvalidArgument):
            world.membership(ctx).transfer_ownership(ctx, team["member"])

    def test_self_transfer_rejected(self, world, team):
        ctx = world.session(team["owner"])
        with pytest.raises(InvalidArgument):
            world.membership(ctx).transfer_ownership(ctx, team["owner"])

    def test_interrupted_transfer_can_be_resumed(self, world, team, monkeypatch):
        """A failure before owner_id is written leaves the caller able to retry"""
        ctx = world.session(team["owner"])
        store = world.scoped(ctx)
        original = store.update_tenant
        calls = {"count": 0}

        def fail_once(updates):
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("store unavailable")
            return original(updates)

        monkeypatch.setattr(store, "update_tenant", fail_once)
        service = world.membership(ctx)
        service.store = store

        with pytest.raises(RuntimeError):
            service.transfer_ownership(ctx, team["admin"])

        assert world.store.get("tenants", team["tenant_id"]).owner_id == team["owner"]

        tenant = service.transfer_ownership(ctx, team["admin"])

        assert tenant.owner_id == team["admin"]
        assert world.identity.get_claims(team["owner"])["role"] == "admin"


class TestGuestPermissions:
    def test_update_guest_permissions(self, world, team):
        ctx = world.session(team["admin"])
        permissions = {"projects": ["p-1", "p-2"], "reports": ["r-9"]}

        user = world.membership(ctx).update_guest_permissions(ctx, team["guest"], permissions)

        assert user.resource_permissions == permissions
        assert world.identity.get_claims(team["guest"])["resource_permissions"] == permissions
        assert world.session(team["guest"]).can_access_document("reports", "r-9")
        assert AuditAction.GUEST_PERMISSIONS_UPDATED in world.audit_actions(team["tenant_id"])

    def test_non_guest_target_rejected(self, world, team):
        ctx = world.session(team["admin"])
        with pytest.raises(InvalidArgument):
            world.membership(ctx).update_guest_permissions(ctx, team["member"], {"x": ["1"]})

    def test_permissions_must_be_mapping(self, world, team):
        ctx = world.session(team["admin"])
        with pytest.raises(InvalidArgument):
            world.membership(ctx).update_guest_permissions(ctx, team["guest"], ["p-1"])

    def test_member_cannot_update(self, world, team):
        ctx = world.session(team["member"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).update_guest_permissions(ctx, team["guest"], {})


class TestDeleteUserFromTenant:
    def test_soft_delete_revokes_claims(self, world, team):
        """Removal clears the claims first; the profile stays for recovery"""
        ctx = world.session(team["admin"])

        user = world.membership(ctx).delete_user_from_tenant(ctx, team["member"])

        assert user.status is UserStatus.DELETED
        assert user.deleted is True
        assert user.deleted_by == team["admin"]
        assert world.identity.get_claims(team["member"]) == {}
        assert AuditAction.USER_DELETED in world.audit_actions(team["tenant_id"])

    def test_removed_member_session_denied(self, world, team):
        ctx = world.session(team["admin"])
        world.membership(ctx).delete_user_from_tenant(ctx, team["member"])

        with pytest.raises(PermissionDenied) as exc_info:
            world.session(team["member"])
        assert not isinstance(exc_info.value, IncompleteSetup)

    def test_removed_member_not_listed(self, world, team):
        ctx = world.session(team["admin"])
        service = world.membership(ctx)
        service.delete_user_from_tenant(ctx, team["member"])

        assert team["member"] not in {m.id for m in service.list_members(ctx)}

    def test_delete_twice_is_noop(self, world, team):
        ctx = world.session(team["admin"])
        service = world.membership(ctx)
        service.delete_user_from_tenant(ctx, team["member"])
        service.delete_user_from_tenant(ctx, team["member"])

        assert world.audit_actions(team["tenant_id"]).count(AuditAction.USER_DELETED) == 1

    def test_cannot_delete_self(self, world, team):
        ctx = world.session(team["admin"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).delete_user_from_tenant(ctx, team["admin"])

    def test_cannot_delete_owner(self, world, team):
        ctx = world.session(team["admin"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).delete_user_from_tenant(ctx, team["owner"])

    def test_admin_cannot_remove_admin(self, world, team):
        other_admin = world.add_member(team["tenant_id"], "admin2@example.com", Role.ADMIN)
        ctx = world.session(team["admin"])

        with pytest.raises(PermissionDenied):
            world.membership(ctx).delete_user_from_tenant(ctx, other_admin)

    def test_owner_removes_admin(self, world, team):
        ctx = world.session(team["owner"])
        user = world.membership(ctx).delete_user_from_tenant(ctx, team["admin"])
        assert user.status is UserStatus.DELETED

    def test_hard_delete_not_available(self, world, team):
        ctx = world.session(team["owner"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).delete_user_from_tenant(ctx, team["member"], hard=True)
        assert world.store.get("users", team["member"]).status is UserStatus.ACTIVE

    def test_unknown_target(self, world, team):
        ctx = world.session(team["owner"])
        with pytest.raises(NotFound):
            world.membership(ctx).delete_user_from_tenant(ctx, "missing-uid")

    def test_member_cannot_delete(self, world, team):
        ctx = world.session(team["member"])
        with pytest.raises(PermissionDenied):
            world.membership(ctx).delete_user_from_tenant(ctx, team["guest"])
