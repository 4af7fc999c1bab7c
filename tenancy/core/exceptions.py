class TenancyException(Exception):
    """
    Base exception for the tenancy core.

    Every subclass carries a stable machine-readable ``code`` that is
    returned to callers together with the human-readable message.
    """

    code = "internal"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class Unauthenticated(TenancyException):
    """Raised when no credential is present or it fails verification"""

    code = "unauthenticated"


class PermissionDenied(TenancyException):
    """Raised when the caller is authenticated but lacks role or ownership"""

    code = "permission-denied"


class AccessDenied(PermissionDenied):
    """Raised when a record fetched by id belongs to another tenant"""

    pass


class IncompleteSetup(PermissionDenied):
    """
    Raised when a valid credential has no tenant_id/role claims yet.

    This is the window between identity creation and provisioning; it is
    recoverable and distinct from a permanent denial.
    """

    code = "incomplete-setup"


class InvalidArgument(TenancyException):
    """Raised for malformed input or disallowed values"""

    code = "invalid-argument"


class AlreadyExists(TenancyException):
    """Raised for duplicate invitations or memberships"""

    code = "already-exists"


class NotFound(TenancyException):
    """Raised when a user, tenant or invitation does not exist"""

    code = "not-found"


class ResourceExhausted(TenancyException):
    """Raised when a rate limit or the tenant seat limit is reached"""

    code = "resource-exhausted"

    def __init__(self, message: str = "", retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class SecurityViolation(TenancyException):
    """Raised when a query returns a record of another tenant. Always fatal."""

    code = "security-violation"


class TenantProvisioningError(TenancyException):
    """Raised when a newly written tenant cannot be verified by read-back"""

    pass


def error_payload(detail: str, code: str) -> dict[str, str]:
    """Structured error body shared by exception handlers and the session middleware."""
    return {"code": code, "detail": detail}
