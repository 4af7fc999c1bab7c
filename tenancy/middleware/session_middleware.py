"""Session middleware: first, stateless layer of the session pipeline."""

from collections.abc import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tenancy.config import settings
from tenancy.core.exceptions import Unauthenticated, error_payload
from tenancy.core.security import decode_jwt
from tenancy.logger import get_logger

logger = get_logger(__name__)

# Routes that don't require a credential
PUBLIC_ROUTES: set[str] = {
    "/",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/auth/login",
    "/api/auth/signup",
    "/api/auth/logout",
}

# Pages for signed-out visitors only
PUBLIC_ONLY_PAGES: tuple[str, ...] = ("/login", "/signup")

# Pages reachable by anyone (including half-provisioned accounts)
PUBLIC_PAGES: tuple[str, ...] = PUBLIC_ONLY_PAGES + ("/unauthorized", "/accept-invite")

PUBLIC_PREFIXES: tuple[str, ...] = ("/docs", "/redoc")


def extract_token(request: Request) -> str | None:
    """Bearer token from the Authorization header, else the session cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header:
        parts = auth_header.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
        return None
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


def _is_api(path: str) -> bool:
    return path.startswith("/api/")


def _matches(path: str, pages: tuple[str, ...]) -> bool:
    return any(path == page or path.startswith(page + "/") for page in pages)


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Verifies the credential's signature and expiry on every request.

    Only decodes the token; it never consults the database. The decoded
    payload is stored on request.state for the get_session_context
    dependency, which re-reads the authoritative claims.

    - Missing/invalid credential: 401 JSON for /api routes, redirect to the
      login page otherwise
    - Signed-in visitor on /login or /signup: redirect to the home page
    - Page request with a token that has no tenant claims yet: redirect to
      the unauthorized page
    """

    def _is_public(self, path: str) -> bool:
        if path in PUBLIC_ROUTES:
            return True
        if path.startswith(PUBLIC_PREFIXES):
            return True
        return _matches(path, PUBLIC_PAGES)

    def _reject(self, path: str, detail: str, clear_cookie: bool) -> Response:
        if _is_api(path):
            response = JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content=error_payload(detail=detail, code=Unauthenticated.code),
                headers={"WWW-Authenticate": "Bearer"},
            )
        else:
            response = RedirectResponse(settings.LOGIN_PATH, status_code=status.HTTP_303_SEE_OTHER)
        if clear_cookie:
            response.delete_cookie(settings.SESSION_COOKIE_NAME)
        return response

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        request.state.token = None
        request.state.token_claims = None

        token = extract_token(request)
        payload = None
        error = None
        if token:
            try:
                payload = decode_jwt(token)
            except Unauthenticated as exc:
                error = exc.message

        if self._is_public(path):
            if payload is not None and _matches(path, PUBLIC_ONLY_PAGES):
                logger.debug("session_public_only_redirect", path=path)
                return RedirectResponse(
                    settings.AUTHENTICATED_HOME_PATH, status_code=status.HTTP_303_SEE_OTHER
                )
            if payload is not None:
                request.state.token = token
                request.state.token_claims = payload
            return await call_next(request)

        if token is None:
            logger.info("session_missing_credential", path=path)
            return self._reject(path, "Authentication required", clear_cookie=False)

        if payload is None:
            logger.warning("session_invalid_credential", path=path, error=error)
            return self._reject(path, error or "Invalid token", clear_cookie=True)

        if not _is_api(path) and (not payload.get("tenant_id") or not payload.get("role")):
            logger.warning("session_missing_claims", path=path, uid=payload.get("sub"))
            return RedirectResponse(
                settings.UNAUTHORIZED_PATH, status_code=status.HTTP_303_SEE_OTHER
            )

        request.state.token = token
        request.state.token_claims = payload
        return await call_next(request)
