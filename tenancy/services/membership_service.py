from datetime import datetime, timedelta
from typing import Callable

from tenancy.config import settings
from tenancy.core.exceptions import InvalidArgument, NotFound, PermissionDenied
from tenancy.logger import get_logger
from tenancy.models.audit_log import AuditAction
from tenancy.models.base import utcnow
from tenancy.models.role import Role
from tenancy.models.session_context import SessionContext
from tenancy.models.tenant import Tenant
from tenancy.models.user import User, UserStatus
from tenancy.repositories.document_store import Filter
from tenancy.repositories.tenant_store import TenantScopedStore
from tenancy.services.identity_provider import IdentityProvider
from tenancy.services.provisioning_service import build_claims

logger = get_logger(__name__)


class MembershipService:
    """
    Role and membership transitions inside the caller's tenant.

    Each transition re-reads the state it guards on, then writes the claims,
    the profile mirror and an audit entry, in that order. The writes are not
    atomic across the claims store and the document store; re-running a
    transition after a partial failure completes it.
    """

    def __init__(
        self,
        store: TenantScopedStore,
        identity: IdentityProvider,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.identity = identity
        self.audit = store.audit
        self.clock = clock

    def _get_member(self, uid: str) -> User:
        """Target profile within the caller's tenant; soft-deleted members count as missing."""
        if not uid:
            raise InvalidArgument("user_id is required")
        user = self.store.get_by_id("users", uid)
        if not user.is_active:
            raise NotFound("User not found")
        return user

    def _is_tenant_owner(self, tenant: Tenant, uid: str) -> bool:
        return tenant.owner_id is not None and tenant.owner_id == uid

    def list_members(self, ctx: SessionContext) -> list[User]:
        """Active members of the caller's tenant."""
        return self.store.query(
            "users", [Filter("status", "==", UserStatus.ACTIVE)], order_by="created_at"
        )

    def update_user_role(self, ctx: SessionContext, target_uid: str, new_role: Role | str) -> User:
        """
        Change another member's role.

        Raises:
            PermissionDenied: Caller not admin/owner, self-target, owner involved,
                or admin promotion/demotion by a non-owner
            NotFound: Target not in the tenant
            AccessDenied: Target belongs to another tenant
            InvalidArgument: Unknown role
        """
        if not ctx.can_manage_users():
            raise PermissionDenied("Only Admins and Owners can change user roles")

        new_role = Role.parse(new_role)

        if target_uid == ctx.user_id:
            raise PermissionDenied("You cannot change your own role")

        target = self._get_member(target_uid)
        tenant = self.store.get_tenant()
        caller_is_owner = self._is_tenant_owner(tenant, ctx.user_id)
        current_role = target.role

        if current_role is Role.OWNER or self._is_tenant_owner(tenant, target_uid):
            raise PermissionDenied("Cannot change Owner role. Use ownership transfer.")
        if new_role is Role.OWNER:
            raise PermissionDenied("Cannot promote to Owner. Use ownership transfer.")
        if new_role is Role.ADMIN and not caller_is_owner:
            raise PermissionDenied("Only Owner can promote users to Admin")
        if current_role is Role.ADMIN and not caller_is_owner:
            raise PermissionDenied("Only Owner can demote Admins")

        claims = self.identity.get_claims(target_uid)
        if claims.get("tenant_id") != ctx.tenant_id:
            raise PermissionDenied("User is not in your organization")

        if current_role is new_role and claims.get("role") == new_role.value:
            return target

        # Becoming a guest starts with an empty allow-list; leaving it drops the list
        if new_role is Role.GUEST:
            permissions = dict(target.resource_permissions or {}) if current_role is Role.GUEST else {}
        else:
            permissions = None

        self.identity.set_claims(target_uid, build_claims(ctx.tenant_id, new_role, permissions))
        target = self.store.update(
            "users",
            target_uid,
            {"role": new_role, "resource_permissions": permissions},
        )

        self.audit.record(
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            action=AuditAction.ROLE_UPDATED,
            collection="users",
            document_id=target_uid,
            changes={
                "old_role": current_role.value,
                "new_role": new_role.value,
                "target_user_email": target.email,
            },
        )
        logger.info(
            "role_updated",
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            target_uid=target_uid,
            old_role=current_role.value,
            new_role=new_role.value,
        )
        return target

    def transfer_ownership(self, ctx: SessionContext, new_owner_uid: str) -> Tenant:
        """
        Swap roles with an admin: the target becomes owner, the caller admin.

        The tenant's owner_id is written last. Until then the caller is still
        the recorded owner, so an interrupted transfer can be re-run by the
        same caller and picks up the remaining steps.

        Raises:
            NotFound: Tenant or target missing
            PermissionDenied: Caller is not the current owner
            InvalidArgument: Self-transfer, or target is not an active admin
        """
        if not new_owner_uid:
            raise InvalidArgument("new_owner_uid is required")

        tenant = self.store.get_tenant()
        if not self._is_tenant_owner(tenant, ctx.user_id):
            raise PermissionDenied("Only the current Owner can transfer ownership")

        if new_owner_uid == ctx.user_id:
            raise InvalidArgument("You are already the owner")

        target = self._get_member(new_owner_uid)
        # An owner target here is the leftover of an interrupted transfer
        if target.role not in (Role.ADMIN, Role.OWNER):
            raise InvalidArgument("New owner must be an existing Admin")

        caller = self.store.get_by_id("users", ctx.user_id)
        completed: list[str] = []
        log = logger.bind(
            tenant_id=ctx.tenant_id, old_owner=ctx.user_id, new_owner=new_owner_uid
        )
        log.info("ownership_transfer_started")

        try:
            self.identity.set_claims(new_owner_uid, build_claims(ctx.tenant_id, Role.OWNER))
            completed.append("new_owner_claims")

            self.store.update(
                "users", new_owner_uid, {"role": Role.OWNER, "resource_permissions": None}
            )
            completed.append("new_owner_profile")

            self.identity.set_claims(ctx.user_id, build_claims(ctx.tenant_id, Role.ADMIN))
            completed.append("old_owner_claims")

            self.store.update("users", ctx.user_id, {"role": Role.ADMIN})
            completed.append("old_owner_profile")

            tenant = self.store.update_tenant({"owner_id": new_owner_uid})
            completed.append("tenant_owner_id")
        except Exception:
            log.error("ownership_transfer_incomplete", completed_steps=completed)
            raise

        self.audit.record(
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            action=AuditAction.OWNERSHIP_TRANSFERRED,
            collection="tenants",
            document_id=ctx.tenant_id,
            changes={
                "old_owner_uid": ctx.user_id,
                "new_owner_uid": new_owner_uid,
                "old_owner_email": caller.email,
                "new_owner_email": target.email,
            },
        )
        log.info("ownership_transferred", completed_steps=completed)
        return tenant

    def update_guest_permissions(
        self, ctx: SessionContext, target_uid: str, resource_permissions: dict[str, list[str]]
    ) -> User:
        """
        Replace a guest's document allow-list.

        Raises:
            PermissionDenied: Caller is not admin/owner
            InvalidArgument: Permissions not a mapping, or target is not a guest
        """
        if not ctx.can_manage_users():
            raise PermissionDenied("Only Admins and Owners can update guest permissions")
        if not isinstance(resource_permissions, dict):
            raise InvalidArgument("resource_permissions must be an object")

        target = self._get_member(target_uid)
        if target.role is not Role.GUEST:
            raise InvalidArgument("User must have Guest role to update resource permissions")

        permissions = {str(k): list(v) for k, v in resource_permissions.items()}
        previous = dict(target.resource_permissions or {})

        self.identity.set_claims(target_uid, build_claims(ctx.tenant_id, Role.GUEST, permissions))
        target = self.store.update("users", target_uid, {"resource_permissions": permissions})

        self.audit.record(
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            action=AuditAction.GUEST_PERMISSIONS_UPDATED,
            collection="users",
            document_id=target_uid,
            changes={
                "target_user_email": target.email,
                "resource_permissions": {"from": previous, "to": permissions},
            },
        )
        logger.info(
            "guest_permissions_updated",
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            target_uid=target_uid,
        )
        return target

    def delete_user_from_tenant(
        self, ctx: SessionContext, target_uid: str, hard: bool = False
    ) -> User:
        """
        Soft-delete a member and revoke their claims immediately.

        The profile stays for SOFT_DELETE_RETENTION_DAYS (nominal recovery
        window) until the maintenance sweep purges it.

        Raises:
            PermissionDenied: Caller not admin/owner, self-target, owner target,
                admin target by a non-owner, or hard=True
            NotFound: Target not found
            AccessDenied: Target belongs to another tenant
        """
        if not ctx.can_manage_users():
            raise PermissionDenied("Only Admins and Owners can remove users")
        if not target_uid:
            raise InvalidArgument("user_id is required")
        if target_uid == ctx.user_id:
            raise PermissionDenied("You cannot delete yourself. Transfer ownership first.")

        target = self.store.get_by_id("users", target_uid)
        tenant = self.store.get_tenant()

        if target.role is Role.OWNER or self._is_tenant_owner(tenant, target_uid):
            raise PermissionDenied("The Owner cannot be removed. Transfer ownership first.")
        if target.role is Role.ADMIN and not self._is_tenant_owner(tenant, ctx.user_id):
            raise PermissionDenied("Only Owner can remove Admins")
        if hard:
            raise PermissionDenied("Permanent deletion is performed by the retention sweep")

        if target.status is UserStatus.DELETED:
            return target

        now = self.clock()
        self.identity.set_claims(target_uid, None)
        target = self.store.update(
            "users",
            target_uid,
            {
                "status": UserStatus.DELETED,
                "deleted": True,
                "deleted_at": now,
                "deleted_by": ctx.user_id,
            },
        )

        self.audit.record(
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            action=AuditAction.USER_DELETED,
            collection="users",
            document_id=target_uid,
            changes={
                "deleted_user_email": target.email,
                "deletion_type": "soft",
                "old_role": target.role.value,
                "recoverable_until": now + timedelta(days=settings.SOFT_DELETE_RETENTION_DAYS),
            },
        )
        logger.info(
            "user_removed",
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            target_uid=target_uid,
        )
        return target
