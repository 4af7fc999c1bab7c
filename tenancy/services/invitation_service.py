import secrets
from datetime import datetime, timedelta
from typing import Callable

from tenancy.config import settings
from tenancy.core.exceptions import (
    AlreadyExists,
    InvalidArgument,
    PermissionDenied,
    ResourceExhausted,
)
from tenancy.logger import get_logger
from tenancy.models.audit_log import AuditAction
from tenancy.models.base import utcnow
from tenancy.models.invitation import Invitation, InvitationStatus
from tenancy.models.role import Role, INVITABLE_ROLES
from tenancy.models.session_context import SessionContext
from tenancy.models.user import UserStatus
from tenancy.repositories.document_store import Filter
from tenancy.repositories.tenant_store import TenantScopedStore

logger = get_logger(__name__)


class InvitationService:
    """Service layer for creating, revoking and listing invitations"""

    def __init__(self, store: TenantScopedStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.audit = store.audit
        self.clock = clock

    def invite_user(
        self,
        ctx: SessionContext,
        email: str,
        role: Role | str,
        resource_permissions: dict[str, list[str]] | None = None,
    ) -> Invitation:
        """
        Invite an email address to the caller's tenant.

        Args:
            ctx: Verified session of the inviter
            email: Address to invite
            role: admin, member, guest or viewer
            resource_permissions: Required for guests (collection -> document ids)

        Returns:
            The pending invitation, including its single-use token

        Raises:
            PermissionDenied: Caller is not admin/owner, or invites an admin without being owner
            InvalidArgument: Bad email, disallowed role, guest without permissions
            AlreadyExists: Active member or pending invitation for the email
            ResourceExhausted: Tenant seat limit reached
        """
        if not ctx.can_manage_users():
            raise PermissionDenied("Only Admins and Owners can invite users")

        if not email or "@" not in email:
            raise InvalidArgument("Valid email address is required")
        email = email.strip().lower()

        role = Role.parse(role)
        if role not in INVITABLE_ROLES:
            allowed = ", ".join(r.value for r in INVITABLE_ROLES)
            raise InvalidArgument(f"Role must be one of: {allowed}")

        tenant = self.store.get_tenant()

        if role is Role.ADMIN and tenant.owner_id != ctx.user_id:
            raise PermissionDenied("Only the Owner can invite Admins")

        if role is Role.GUEST and not resource_permissions:
            raise InvalidArgument("Guest role requires resource_permissions map")

        existing_users = self.store.query("users", [Filter("email", "==", email)], limit=1)
        if existing_users:
            if existing_users[0].status is UserStatus.DELETED:
                # The profile is held until the retention purge
                raise AlreadyExists(
                    "This user was removed from your organization and cannot be "
                    "re-invited until the removal is purged"
                )
            raise AlreadyExists("User with this email already exists in your organization")

        if self._pending_invitation_for(email) is not None:
            raise AlreadyExists("Pending invitation already exists for this email")

        max_users = tenant.max_users or settings.DEFAULT_MAX_USERS
        active_members = self.store.count("users", [Filter("status", "==", UserStatus.ACTIVE)])
        if active_members >= max_users:
            raise ResourceExhausted(
                f"Your organization has reached the maximum user limit of {max_users}"
            )

        now = self.clock()
        token = secrets.token_hex(32)
        invitation = self.store.create(
            "invitations",
            {
                "email": email,
                "role": role,
                "invited_by": ctx.user_id,
                "invited_at": now,
                "expires_at": now + timedelta(days=settings.INVITATION_TTL_DAYS),
                "status": InvitationStatus.PENDING,
                "invite_token": token,
                "invite_link": f"{settings.APP_URL.rstrip('/')}/accept-invite?token={token}",
                "token_used": False,
                "resource_permissions": (
                    dict(resource_permissions) if role is Role.GUEST else None
                ),
            },
        )

        self.audit.record(
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            action=AuditAction.INVITATION_CREATED,
            collection="invitations",
            document_id=invitation.id,
            changes={"email": email, "role": role.value},
        )

        logger.info(
            "invitation_created",
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            invitation_id=invitation.id,
            role=role.value,
        )
        return invitation

    def _pending_invitation_for(self, email: str) -> Invitation | None:
        """The live pending invitation for the email; stale ones are marked expired."""
        pending = self.store.query(
            "invitations",
            [Filter("email", "==", email), Filter("status", "==", InvitationStatus.PENDING)],
        )
        now = self.clock()
        for invitation in pending:
            if invitation.is_expired(now):
                self.store.update(
                    "invitations", invitation.id, {"status": InvitationStatus.EXPIRED}
                )
                continue
            return invitation
        return None

    def revoke_invitation(self, ctx: SessionContext, invitation_id: str) -> Invitation:
        """
        Withdraw a pending invitation so its token can no longer be redeemed.

        Raises:
            PermissionDenied: Caller is not admin/owner
            NotFound: No such invitation
            AccessDenied: Invitation belongs to another tenant
            InvalidArgument: Invitation was already accepted
        """
        if not ctx.can_manage_users():
            raise PermissionDenied("Only Admins and Owners can revoke invitations")

        invitation = self.store.get_by_id("invitations", invitation_id)

        if invitation.token_used or invitation.status is InvitationStatus.ACCEPTED:
            raise InvalidArgument("Invitation has already been accepted")
        if invitation.status is InvitationStatus.REVOKED:
            return invitation

        previous_status = invitation.status
        invitation = self.store.update(
            "invitations", invitation_id, {"status": InvitationStatus.REVOKED}
        )
        self.store.delete("invitations", invitation_id)

        self.audit.record(
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            action=AuditAction.INVITATION_REVOKED,
            collection="invitations",
            document_id=invitation_id,
            changes={
                "email": invitation.email,
                "status": {"from": previous_status.value, "to": InvitationStatus.REVOKED.value},
            },
        )
        logger.info(
            "invitation_revoked",
            tenant_id=ctx.tenant_id,
            actor_id=ctx.user_id,
            invitation_id=invitation_id,
        )
        return invitation

    def list_invitations(self, ctx: SessionContext) -> list[Invitation]:
        """Pending invitations of the caller's tenant, newest first."""
        if not ctx.can_manage_users():
            raise PermissionDenied("Only Admins and Owners can view invitations")
        return self.store.query(
            "invitations",
            [Filter("status", "==", InvitationStatus.PENDING), Filter("deleted", "==", False)],
            order_by="invited_at",
            descending=True,
        )
