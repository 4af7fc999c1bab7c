from dataclasses import dataclass

from tenancy.core.exceptions import (
    IncompleteSetup,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    Unauthenticated,
)
from tenancy.logger import get_logger
from tenancy.models.role import Role
from tenancy.models.session_context import SessionContext
from tenancy.models.user import UserStatus
from tenancy.repositories.document_store import DocumentStore
from tenancy.services.identity_provider import IdentityProvider

logger = get_logger(__name__)

# Claims that, when they differ between token and store, make the token stale
TRACKED_CLAIMS = ("tenant_id", "role", "resource_permissions")


@dataclass(frozen=True)
class VerifiedSession:
    context: SessionContext
    refresh_required: bool = False


class SessionVerifier:
    """
    Turns a signed credential into a trusted SessionContext.

    The token proves identity. tenant_id and role are always taken from the
    claims store, never from the token, so a role change or removal takes
    effect on the next request even while the old token is unexpired.
    """

    def __init__(self, identity: IdentityProvider, store: DocumentStore):
        self.identity = identity
        self.store = store

    def verify(self, token: str) -> VerifiedSession:
        """
        Raises:
            Unauthenticated: Bad signature, expired, revoked, unknown identity
            IncompleteSetup: Valid identity with no tenant assignment yet
            PermissionDenied: Member was removed from their tenant
        """
        payload = self.identity.verify_token(token)
        return self.resolve(payload)

    def resolve(self, payload: dict) -> VerifiedSession:
        uid = payload["sub"]
        try:
            identity = self.identity.get_user(uid)
        except NotFound:
            raise Unauthenticated("User not found")

        claims = identity.custom_claims or {}
        tenant_id = claims.get("tenant_id")
        raw_role = claims.get("role")

        if not tenant_id or not raw_role:
            profile = self.store.get("users", uid)
            if profile is not None and profile.status is UserStatus.DELETED:
                logger.info("session_rejected_removed_member", uid=uid)
                raise PermissionDenied("Your access to this organization has been removed")
            logger.info("session_incomplete_setup", uid=uid)
            raise IncompleteSetup("Account setup is not complete yet. Please retry shortly.")

        try:
            role = Role.parse(raw_role)
        except InvalidArgument:
            logger.warning("session_unknown_role", uid=uid, role=raw_role)
            raise PermissionDenied("Unrecognized role")

        refresh_required = any(payload.get(key) != claims.get(key) for key in TRACKED_CLAIMS)
        if refresh_required:
            logger.debug("session_token_stale", uid=uid, tenant_id=tenant_id)

        context = SessionContext(
            user_id=uid,
            tenant_id=tenant_id,
            role=role,
            email=identity.email,
            resource_permissions=dict(claims.get("resource_permissions") or {}),
        )
        return VerifiedSession(context=context, refresh_required=refresh_required)
