import pytest

from tenancy.config import settings
from tenancy.core.exceptions import NotFound
from tenancy.models.audit_log import AuditAction
from tenancy.models.role import Role
from tenancy.services.maintenance_service import MaintenanceService


@pytest.fixture
def maintenance(world):
    return MaintenanceService(world.privileged, world.identity, world.rate_limiter, world.clock)


@pytest.fixture
def removed_member(world, owned_tenant):
    """A member soft-deleted by the owner; returns (tenant_id, uid)"""
    tenant_id, owner_uid = owned_tenant
    uid = world.add_member(tenant_id, "leaver@example.com", Role.MEMBER)
    owner = world.session(owner_uid)
    world.membership(owner).delete_user_from_tenant(owner, uid)
    return tenant_id, uid


class TestPurgeDeletedUsers:
    def test_recent_deletions_are_kept(self, world, maintenance, removed_member):
        _, uid = removed_member

        assert maintenance.purge_deleted_users() == 0
        assert world.store.get("users", uid) is not None

    def test_purges_after_retention(self, world, maintenance, removed_member, clock):
        """Soft-deleted members are hard-deleted once the retention window passes"""
        tenant_id, uid = removed_member
        clock.advance(days=settings.SOFT_DELETE_RETENTION_DAYS + 1)

        assert maintenance.purge_deleted_users() == 1

        assert world.store.get("users", uid) is None
        with pytest.raises(NotFound):
            world.identity.get_user(uid)
        assert AuditAction.USER_HARD_DELETED in world.audit_actions(tenant_id)

    def test_active_members_untouched(self, world, maintenance, removed_member, clock):
        tenant_id, _ = removed_member
        clock.advance(days=settings.SOFT_DELETE_RETENTION_DAYS + 1)
        maintenance.purge_deleted_users()

        remaining = world.privileged.query("users")
        assert len(remaining) == 1
        assert remaining[0].role is Role.OWNER

    def test_missing_identity_does_not_stop_sweep(self, world, maintenance, removed_member, clock):
        """A rerun after a partial purge finishes the profile removal"""
        _, uid = removed_member
        world.identity.delete_user(uid)
        clock.advance(days=settings.SOFT_DELETE_RETENTION_DAYS + 1)

        assert maintenance.purge_deleted_users() == 1
        assert world.store.get("users", uid) is None

    def test_custom_retention(self, world, maintenance, removed_member, clock):
        clock.advance(days=2)
        assert maintenance.purge_deleted_users(retention_days=1) == 1


class TestPurgeRevokedInvitations:
    def test_revoked_invitation_purged_after_retention(self, world, maintenance, owned_tenant):
        tenant_id, owner_uid = owned_tenant
        owner = world.session(owner_uid)
        service = world.invitations(owner)
        invitation = service.invite_user(owner, "never@example.com", Role.MEMBER)
        invitation_id = invitation.id
        service.revoke_invitation(owner, invitation_id)

        # Soft deletes are stamped with wall-clock time
        world.clock.advance(days=settings.SOFT_DELETE_RETENTION_DAYS + 1)

        assert maintenance.purge_revoked_invitations() == 1
        assert world.store.get("invitations", invitation_id) is None


class TestRun:
    def test_run_reports_every_sweep(self, world, maintenance, removed_member, clock):
        world.rate_limiter.check_api_rate_limit("uid-1")
        clock.advance(days=settings.SOFT_DELETE_RETENTION_DAYS + 1)

        result = maintenance.run()

        assert result == {
            "rate_limits_deleted": 1,
            "users_purged": 1,
            "invitations_purged": 0,
        }

    def test_run_twice_is_idempotent(self, maintenance, removed_member, clock):
        clock.advance(days=settings.SOFT_DELETE_RETENTION_DAYS + 1)
        maintenance.run()

        assert maintenance.run() == {
            "rate_limits_deleted": 0,
            "users_purged": 0,
            "invitations_purged": 0,
        }
