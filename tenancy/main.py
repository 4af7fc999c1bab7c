from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tenancy.config import settings
from tenancy.core.exceptions import (
    AlreadyExists,
    IncompleteSetup,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    ResourceExhausted,
    SecurityViolation,
    TenancyException,
    Unauthenticated,
    error_payload,
)
from tenancy.logger import get_logger, setup_logging
from tenancy.middleware.session_middleware import SessionMiddleware
from tenancy.routes import auth_routes, tenant_routes

setup_logging()
logger = get_logger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,  # Disable in production
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.add_middleware(SessionMiddleware)

# CORS middleware (added last so it wraps the session gate)
cors_origins = settings.cors_origins_list
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# Most specific class first; the first isinstance match wins
_STATUS_CODES: list[tuple[type[TenancyException], int]] = [
    (Unauthenticated, status.HTTP_401_UNAUTHORIZED),
    (IncompleteSetup, status.HTTP_403_FORBIDDEN),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (InvalidArgument, status.HTTP_400_BAD_REQUEST),
    (AlreadyExists, status.HTTP_409_CONFLICT),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (ResourceExhausted, status.HTTP_429_TOO_MANY_REQUESTS),
    (SecurityViolation, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def _status_for(exc: TenancyException) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# Exception handlers
@app.exception_handler(TenancyException)
async def tenancy_exception_handler(request: Request, exc: TenancyException):
    status_code = _status_for(exc)
    headers = {}
    if isinstance(exc, Unauthenticated):
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, ResourceExhausted) and exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)

    if status_code >= 500:
        logger.error(
            "request_failed", path=request.url.path, code=exc.code, error=exc.message
        )
        if isinstance(exc, SecurityViolation):
            detail = "Security violation detected"
        else:
            detail = "Internal error"
    else:
        detail = exc.message

    return JSONResponse(
        status_code=status_code,
        content=error_payload(detail=detail, code=exc.code),
        headers=headers or None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    detail = f"{location}: {message}" if location else message
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(detail=detail, code=InvalidArgument.code),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        "database_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(detail="Internal error", code=TenancyException.code),
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION}


# Root endpoint
@app.get("/")
async def root():
    return {
        "message": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs" if settings.DEBUG else "Documentation disabled in production",
    }


# Include routers
app.include_router(auth_routes.router, prefix="/api/auth", tags=["Auth"])
app.include_router(tenant_routes.router, prefix="/api/tenants", tags=["Tenants"])
