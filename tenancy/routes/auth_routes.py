from fastapi import APIRouter, Depends, Request, Response, status

from tenancy.config import settings
from tenancy.core.exceptions import TenancyException
from tenancy.dependencies import (
    get_authenticated_uid,
    get_identity_provider,
    get_privileged_store,
    get_provisioning_service,
    get_rate_limiter,
    get_session_context,
)
from tenancy.logger import get_logger
from tenancy.models.session_context import SessionContext
from tenancy.repositories.tenant_store import PrivilegedStore
from tenancy.schemas.auth_schemas import (
    AcceptInvitationRequest,
    LoginRequest,
    SessionResponse,
    SignupRequest,
    TokenResponse,
)
from tenancy.services.identity_provider import IdentityProvider
from tenancy.services.provisioning_service import ProvisioningService
from tenancy.services.rate_limiter import RateLimiter

logger = get_logger(__name__)

router = APIRouter()


def _token_response(identity: IdentityProvider, uid: str) -> TokenResponse:
    token = identity.mint_token(identity.get_user(uid))
    return TokenResponse(access_token=token, expires_in=settings.ACCESS_TOKEN_TTL_SECONDS)


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_COOKIE_MAX_AGE,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    data: SignupRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
    provisioning: ProvisioningService = Depends(get_provisioning_service),
):
    """
    Register an account and assign its tenant.

    - With **invite_token**: joins the inviting tenant with the invited role
    - Without: a pending invitation for the email is used if one exists,
      otherwise a new tenant is created and the user becomes its admin

    The returned token already carries the tenant claims.
    """
    if data.invite_token:
        provisioning.find_redeemable_invitation(data.invite_token, data.email)

    account = identity.create_user(data.email, data.password, data.display_name)

    try:
        if data.invite_token:
            provisioning.accept_invitation(data.invite_token, account.uid)
        else:
            provisioning.on_account_create(account.uid, account.email, account.display_name)
    except TenancyException:
        # No profile written yet: drop the identity so signup can be retried
        if provisioning.store.get("users", account.uid) is None:
            identity.delete_user(account.uid)
        raise

    return _token_response(identity, account.uid)


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    response: Response,
    identity: IdentityProvider = Depends(get_identity_provider),
    limiter: RateLimiter = Depends(get_rate_limiter),
    store: PrivilegedStore = Depends(get_privileged_store),
):
    """
    Password login.

    - 5 attempts per email per 15 minutes, then locked for 15 minutes
    - Sets the httpOnly session cookie in addition to returning the token
    """
    limiter.check_login_rate_limit(data.email)
    account = identity.authenticate(data.email, data.password)
    limiter.clear_login_rate_limit(data.email)

    profile = store.get("users", account.uid)
    if profile is not None and profile.is_active:
        store.update("users", account.uid, {"last_login": identity.clock()})

    token_response = _token_response(identity, account.uid)
    _set_session_cookie(response, token_response.access_token)
    logger.info("login_succeeded", uid=account.uid)
    return token_response


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Revoke every token of the caller and clear the session cookie."""
    claims = getattr(request.state, "token_claims", None)
    if claims:
        identity.revoke_tokens(claims["sub"])

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return response


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    response: Response,
    uid: str = Depends(get_authenticated_uid),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """
    Re-issue the token with the current claims.

    Clients call this after a response carried X-Auth-Refresh: required.
    """
    token_response = _token_response(identity, uid)
    _set_session_cookie(response, token_response.access_token)
    return token_response


@router.post("/accept-invitation", response_model=TokenResponse)
async def accept_invitation(
    data: AcceptInvitationRequest,
    response: Response,
    uid: str = Depends(get_authenticated_uid),
    identity: IdentityProvider = Depends(get_identity_provider),
    provisioning: ProvisioningService = Depends(get_provisioning_service),
):
    """Redeem an invitation token for the signed-in account."""
    provisioning.accept_invitation(data.token, uid)
    token_response = _token_response(identity, uid)
    _set_session_cookie(response, token_response.access_token)
    return token_response


@router.get("/me", response_model=SessionResponse)
async def me(ctx: SessionContext = Depends(get_session_context)):
    """The caller's verified session context."""
    return ctx
