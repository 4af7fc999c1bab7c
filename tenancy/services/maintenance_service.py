from datetime import datetime, timedelta
from typing import Callable

from tenancy.config import settings
from tenancy.core.exceptions import NotFound
from tenancy.logger import get_logger
from tenancy.models.audit_log import AuditAction
from tenancy.models.base import utcnow
from tenancy.models.user import User
from tenancy.repositories.document_store import Filter
from tenancy.repositories.tenant_store import PrivilegedStore
from tenancy.services.identity_provider import IdentityProvider
from tenancy.services.rate_limiter import RateLimiter

logger = get_logger(__name__)


class MaintenanceService:
    """
    Periodic sweeps. Both only touch records that are already expired, so
    they are idempotent and safe to run alongside live traffic.

    - Rate-limit counters past expires_at are deleted.
    - Soft-deleted records older than the retention window are purged
      (active -> soft-deleted -> purged).
    """

    def __init__(
        self,
        store: PrivilegedStore,
        identity: IdentityProvider,
        rate_limiter: RateLimiter,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.identity = identity
        self.rate_limiter = rate_limiter
        self.audit = store.audit
        self.clock = clock

    def cleanup_rate_limits(self, batch_size: int | None = None) -> int:
        return self.rate_limiter.cleanup_expired(batch_size)

    def purge_deleted_users(
        self, retention_days: int | None = None, batch_size: int | None = None
    ) -> int:
        """
        Hard-delete members soft-deleted more than retention_days ago.

        Returns:
            Number of users purged in this batch
        """
        retention_days = retention_days or settings.SOFT_DELETE_RETENTION_DAYS
        batch_size = batch_size or settings.CLEANUP_BATCH_SIZE
        cutoff = self.clock() - timedelta(days=retention_days)

        expired = self.store.query(
            "users",
            [Filter("deleted", "==", True), Filter("deleted_at", "<", cutoff)],
            limit=batch_size,
        )
        if not expired:
            logger.info("user_purge_nothing_to_do", cutoff=cutoff.isoformat())
            return 0

        for user in expired:
            self.purge_user(user)

        logger.info("user_purge_done", purged=len(expired))
        return len(expired)

    def purge_user(self, user: User) -> None:
        """
        Remove the identity, then the membership profile, then audit.

        A missing identity means an earlier run got this far; the sweep
        carries on with the profile.
        """
        uid, tenant_id = user.id, user.tenant_id
        changes = {
            "deleted_user_email": user.email,
            "deletion_type": "hard",
            "deleted_by": user.deleted_by,
            "deleted_at": user.deleted_at,
        }

        try:
            self.identity.delete_user(uid)
        except NotFound:
            logger.info("identity_already_deleted", uid=uid)

        self.store.scoped(tenant_id).delete("users", uid, hard=True)

        self.audit.record(
            tenant_id=tenant_id,
            actor_id=self.store.actor_id,
            action=AuditAction.USER_HARD_DELETED,
            collection="users",
            document_id=uid,
            changes=changes,
        )
        logger.info("user_purged", uid=uid, tenant_id=tenant_id)

    def purge_revoked_invitations(
        self, retention_days: int | None = None, batch_size: int | None = None
    ) -> int:
        """Hard-delete revoked invitations past the retention window."""
        retention_days = retention_days or settings.SOFT_DELETE_RETENTION_DAYS
        batch_size = batch_size or settings.CLEANUP_BATCH_SIZE
        cutoff = self.clock() - timedelta(days=retention_days)

        expired = self.store.query(
            "invitations",
            [Filter("deleted", "==", True), Filter("deleted_at", "<", cutoff)],
            limit=batch_size,
        )
        deleted = self.store.store.batch_delete(
            "invitations", [invitation.id for invitation in expired]
        )
        if deleted:
            logger.info("invitation_purge_done", purged=deleted)
        return deleted

    def run(self) -> dict:
        """One pass of every sweep."""
        return {
            "rate_limits_deleted": self.cleanup_rate_limits(),
            "users_purged": self.purge_deleted_users(),
            "invitations_purged": self.purge_revoked_invitations(),
        }
