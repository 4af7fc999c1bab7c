import re
import uuid
from datetime import datetime
from typing import Callable

from tenancy.config import settings
from tenancy.core.exceptions import (
    AlreadyExists,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    TenantProvisioningError,
)
from tenancy.logger import get_logger
from tenancy.models.audit_log import AuditAction
from tenancy.models.base import utcnow
from tenancy.models.invitation import Invitation, InvitationStatus
from tenancy.models.role import Role
from tenancy.models.tenant import Tenant, TenantStatus
from tenancy.models.user import User, UserStatus
from tenancy.repositories.document_store import Filter
from tenancy.repositories.tenant_store import PrivilegedStore, SYSTEM_ACTOR
from tenancy.services.identity_provider import IdentityProvider

logger = get_logger(__name__)

TENANT_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
INVITE_TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def build_claims(tenant_id: str, role: Role, resource_permissions: dict | None = None) -> dict:
    """Claim set stored on the identity; guests also carry their allow-list."""
    claims = {"tenant_id": tenant_id, "role": role.value}
    if role is Role.GUEST:
        claims["resource_permissions"] = dict(resource_permissions or {})
    return claims


class ProvisioningService:
    """
    System-side membership transitions.

    Runs in the privileged posture: a new account has no tenant yet, so
    nothing here can be scoped to a session.
    """

    def __init__(
        self,
        store: PrivilegedStore,
        identity: IdentityProvider,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.identity = identity
        self.audit = store.audit
        self.clock = clock

    def on_account_create(
        self, uid: str, email: str | None, display_name: str | None = None
    ) -> User:
        """
        Assign a tenant and role to a freshly created identity.

        Flow:
        1. Already provisioned -> return the existing profile (retry-safe)
        2. Pending invitation for the email -> join that tenant with its role
        3. Otherwise -> create a new tenant, the user becomes its admin
        4. Write claims, then the profile, then the audit entry

        Raises:
            InvalidArgument: If the identity has no email
            TenantProvisioningError: If the new tenant cannot be read back
        """
        if not email:
            logger.error("account_without_email", uid=uid)
            raise InvalidArgument("User must have an email address")

        email = email.strip().lower()

        existing = self.store.get("users", uid)
        if existing is not None:
            logger.info("account_already_provisioned", uid=uid, tenant_id=existing.tenant_id)
            return existing

        invitation = self._find_pending_invitation(email)
        if invitation is not None:
            logger.info(
                "account_joining_tenant",
                uid=uid,
                tenant_id=invitation.tenant_id,
                role=invitation.role.value,
            )
            self._mark_accepted(invitation, uid)
            return self._establish_membership(
                uid,
                email,
                display_name,
                invitation.tenant_id,
                invitation.role,
                invitation.resource_permissions,
                actor_id=uid,
            )

        tenant = self._create_tenant(uid, email)
        return self._establish_membership(
            uid, email, display_name, tenant.id, Role.ADMIN, None, actor_id=uid
        )

    def _find_pending_invitation(self, email: str) -> Invitation | None:
        """First unused, unexpired pending invitation; stale ones are marked expired."""
        candidates = self.store.query(
            "invitations",
            [
                Filter("email", "==", email),
                Filter("status", "==", InvitationStatus.PENDING),
                Filter("token_used", "==", False),
            ],
            order_by="invited_at",
        )
        now = self.clock()
        for invitation in candidates:
            if invitation.is_expired(now):
                self.store.update(
                    "invitations", invitation.id, {"status": InvitationStatus.EXPIRED}
                )
                continue
            return invitation
        return None

    def _create_tenant(self, uid: str, email: str) -> Tenant:
        tenant_id = uuid.uuid4().hex
        if not TENANT_ID_PATTERN.match(tenant_id):
            raise TenantProvisioningError(f"Generated tenant id is malformed: {tenant_id}")

        logger.info("tenant_creating", tenant_id=tenant_id, uid=uid)
        self.store.set(
            "tenants",
            tenant_id,
            {
                "name": f"{email.split('@')[0]}'s Organization",
                "status": TenantStatus.ACTIVE,
                "owner_id": None,
                "created_by": uid,
                "updated_by": uid,
                "settings": {
                    "max_users": settings.DEFAULT_MAX_USERS,
                    "features": ["basic"],
                    "plan": "free",
                    "billing_email": email,
                },
            },
        )

        tenant = self.store.get("tenants", tenant_id)
        if tenant is None or tenant.id != tenant_id:
            logger.error(
                "tenant_readback_mismatch",
                expected=tenant_id,
                actual=tenant.id if tenant is not None else None,
            )
            raise TenantProvisioningError("Tenant could not be verified after creation")

        self.audit.record(
            tenant_id=tenant_id,
            actor_id=uid,
            action=AuditAction.TENANT_CREATED,
            collection="tenants",
            document_id=tenant_id,
            changes={"name": tenant.name, "created_by": uid},
        )
        return tenant

    def _mark_accepted(self, invitation: Invitation, uid: str) -> None:
        self.store.update(
            "invitations",
            invitation.id,
            {
                "token_used": True,
                "status": InvitationStatus.ACCEPTED,
                "user_id": uid,
                "accepted_at": self.clock(),
            },
        )
        self.audit.record(
            tenant_id=invitation.tenant_id,
            actor_id=uid,
            action=AuditAction.INVITATION_ACCEPTED,
            collection="invitations",
            document_id=invitation.id,
            changes={"status": {"from": "pending", "to": "accepted"}, "user_id": uid},
        )

    def _establish_membership(
        self,
        uid: str,
        email: str,
        display_name: str | None,
        tenant_id: str,
        role: Role,
        resource_permissions: dict | None,
        actor_id: str,
    ) -> User:
        """Claims first, then the profile mirror, then the audit entry."""
        permissions = dict(resource_permissions or {}) if role is Role.GUEST else None

        self.identity.set_claims(uid, build_claims(tenant_id, role, permissions))

        now = self.clock()
        user = self.store.set(
            "users",
            uid,
            {
                "tenant_id": tenant_id,
                "email": email,
                "display_name": display_name or email.split("@")[0],
                "role": role,
                "status": UserStatus.ACTIVE,
                "resource_permissions": permissions,
                "created_by": actor_id,
                "updated_by": actor_id,
                "last_login": now,
            },
        )

        self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=AuditAction.USER_CREATED,
            collection="users",
            document_id=uid,
            changes={"role": role.value, "status": UserStatus.ACTIVE.value, "email": email},
        )

        logger.info("membership_established", uid=uid, tenant_id=tenant_id, role=role.value)
        return user

    def find_redeemable_invitation(self, token: str, email: str) -> Invitation:
        """
        Look up the pending invitation a token redeems for ``email``.

        Raises:
            InvalidArgument: Malformed or expired token
            NotFound: No unused invitation carries the token
            PermissionDenied: The invitation was sent to another email
        """
        if not token or not INVITE_TOKEN_PATTERN.match(token):
            raise InvalidArgument("Invalid invitation token")

        matches = self.store.query(
            "invitations",
            [Filter("invite_token", "==", token), Filter("token_used", "==", False)],
            limit=1,
        )
        if not matches:
            raise NotFound("Invitation not found or already used")
        invitation = matches[0]

        if invitation.status is not InvitationStatus.PENDING:
            raise NotFound("Invitation not found or already used")

        if invitation.is_expired(self.clock()):
            self.store.update("invitations", invitation.id, {"status": InvitationStatus.EXPIRED})
            raise InvalidArgument("Invitation has expired")

        if (email or "").strip().lower() != invitation.email:
            logger.warning(
                "invitation_email_mismatch",
                invitation_id=invitation.id,
                tenant_id=invitation.tenant_id,
            )
            raise PermissionDenied("This invitation was sent to a different email address")
        return invitation

    def accept_invitation(self, token: str, uid: str) -> User:
        """
        Redeem a single-use invitation token for an existing identity.

        Raises:
            InvalidArgument: Malformed or expired token
            NotFound: No unused invitation carries the token
            PermissionDenied: The identity's email is not the invited one
            AlreadyExists: The identity already belongs to a tenant
        """
        identity = self.identity.get_user(uid)
        invitation = self.find_redeemable_invitation(token, identity.email)

        if self.store.get("users", uid) is not None or (identity.custom_claims or {}).get(
            "tenant_id"
        ):
            raise AlreadyExists("User already belongs to a tenant")

        self._mark_accepted(invitation, uid)
        return self._establish_membership(
            uid,
            identity.email,
            identity.display_name,
            invitation.tenant_id,
            invitation.role,
            invitation.resource_permissions,
            actor_id=uid,
        )

    def elevate_to_owner(self, tenant_id: str, uid: str, actor_id: str = SYSTEM_ACTOR) -> User:
        """
        Make an existing member the first owner of a tenant.

        Self-service signup never produces an owner; this is the explicit
        operator step that does. Afterwards ownership only moves through
        transfer.

        Raises:
            NotFound: Unknown tenant or user
            PermissionDenied: The tenant already has an owner
            InvalidArgument: The user is not an active member of the tenant
        """
        tenant = self.store.get("tenants", tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found")
        if tenant.owner_id:
            raise PermissionDenied("Tenant already has an owner")

        user = self.store.get("users", uid)
        if user is None:
            raise NotFound("User not found")
        if user.tenant_id != tenant_id or not user.is_active:
            raise InvalidArgument("User is not an active member of this tenant")

        previous_role = user.role
        self.identity.set_claims(uid, build_claims(tenant_id, Role.OWNER))
        user = self.store.update(
            "users",
            uid,
            {"role": Role.OWNER, "resource_permissions": None, "updated_by": actor_id},
        )
        self.store.update("tenants", tenant_id, {"owner_id": uid, "updated_by": actor_id})

        self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=AuditAction.OWNER_ASSIGNED,
            collection="tenants",
            document_id=tenant_id,
            changes={
                "owner_id": {"from": None, "to": uid},
                "role": {"from": previous_role.value, "to": Role.OWNER.value},
            },
        )
        logger.info("owner_assigned", tenant_id=tenant_id, uid=uid)
        return user
