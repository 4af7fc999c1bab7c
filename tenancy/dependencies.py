from datetime import datetime
from typing import Callable

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from tenancy.core.exceptions import Unauthenticated
from tenancy.database import get_db
from tenancy.models.base import utcnow
from tenancy.models.session_context import SessionContext
from tenancy.repositories.audit_repository import AuditRepository
from tenancy.repositories.document_store import DocumentStore
from tenancy.repositories.tenant_store import PrivilegedStore, TenantScopedStore
from tenancy.services.identity_provider import IdentityProvider
from tenancy.services.invitation_service import InvitationService
from tenancy.services.membership_service import MembershipService
from tenancy.services.provisioning_service import ProvisioningService
from tenancy.services.rate_limiter import RateLimiter
from tenancy.services.session_verifier import SessionVerifier
from tenancy.services.tenant_service import TenantService

REFRESH_HEADER = "X-Auth-Refresh"


def get_clock() -> Callable[[], datetime]:
    """Time source for services; overridden in tests."""
    return utcnow


def get_document_store(db: Session = Depends(get_db)) -> DocumentStore:
    return DocumentStore(db)


def get_audit_repository(store: DocumentStore = Depends(get_document_store)) -> AuditRepository:
    return AuditRepository(store)


def get_identity_provider(
    db: Session = Depends(get_db), clock: Callable[[], datetime] = Depends(get_clock)
) -> IdentityProvider:
    return IdentityProvider(db, clock)


def get_rate_limiter(
    store: DocumentStore = Depends(get_document_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> RateLimiter:
    return RateLimiter(store, clock)


async def get_authenticated_uid(
    request: Request, identity: IdentityProvider = Depends(get_identity_provider)
) -> str:
    """
    uid of a verified, unrevoked credential; tenant claims not required.

    For the few routes a not-yet-provisioned account may call.
    """
    token = getattr(request.state, "token", None)
    if not token:
        raise Unauthenticated("Authentication required")
    return identity.verify_token(token)["sub"]


async def get_session_context(
    request: Request,
    response: Response,
    identity: IdentityProvider = Depends(get_identity_provider),
    store: DocumentStore = Depends(get_document_store),
) -> SessionContext:
    """
    FastAPI dependency that produces the trusted session context.

    Flow:
    1. Take the credential the session middleware already decoded
    2. Re-verify it against the claims store (revocation, disabled identity)
    3. Read tenant_id and role from the claims store, not from the token
    4. Flag the response when the token's embedded claims are stale
    5. Cache the context on request.state for the rest of the request

    Raises:
        Unauthenticated: Missing, invalid or revoked credential
        IncompleteSetup: Account not provisioned yet
        PermissionDenied: Member removed from the tenant
    """
    cached = getattr(request.state, "session", None)
    if cached is not None:
        return cached

    token = getattr(request.state, "token", None)
    if not token:
        raise Unauthenticated("Authentication required")

    verified = SessionVerifier(identity, store).verify(token)
    if verified.refresh_required:
        response.headers[REFRESH_HEADER] = "required"

    request.state.session = verified.context
    return verified.context


async def enforce_rate_limits(
    ctx: SessionContext = Depends(get_session_context),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> SessionContext:
    """Per-user and per-tenant API limits, applied after authentication."""
    limiter.check_api_rate_limit(ctx.user_id)
    limiter.check_tenant_rate_limit(ctx.tenant_id)
    return ctx


def get_tenant_store(
    ctx: SessionContext = Depends(enforce_rate_limits),
    store: DocumentStore = Depends(get_document_store),
    audit: AuditRepository = Depends(get_audit_repository),
) -> TenantScopedStore:
    return TenantScopedStore(store, ctx.tenant_id, ctx.user_id, audit)


def get_privileged_store(
    store: DocumentStore = Depends(get_document_store),
    audit: AuditRepository = Depends(get_audit_repository),
) -> PrivilegedStore:
    return PrivilegedStore(store, audit)


def get_provisioning_service(
    store: PrivilegedStore = Depends(get_privileged_store),
    identity: IdentityProvider = Depends(get_identity_provider),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ProvisioningService:
    return ProvisioningService(store, identity, clock)


def get_invitation_service(
    store: TenantScopedStore = Depends(get_tenant_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> InvitationService:
    return InvitationService(store, clock)


def get_membership_service(
    store: TenantScopedStore = Depends(get_tenant_store),
    identity: IdentityProvider = Depends(get_identity_provider),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> MembershipService:
    return MembershipService(store, identity, clock)


def get_tenant_service(store: TenantScopedStore = Depends(get_tenant_store)) -> TenantService:
    return TenantService(store)
