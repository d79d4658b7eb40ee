"""
Domain Exceptions

Every error the provisioning and access layers raise on purpose lives here.
Services raise these, never HTTPException; the FastAPI handlers in
app.main translate them into JSON responses.

Each error carries:
    - status_code: HTTP status returned to the caller
    - code: machine-readable error code
    - public_message: text safe to show an unauthenticated caller
    - context: extra data for logs only (step name, attempt, slug...)
"""

from typing import Any, Optional


class TenantPlatformError(Exception):
    """Base class for all domain-level errors."""

    status_code: int = 500
    code: str = "internal_error"
    public_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str = "",
        *,
        public_message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message
        self.context = context or {}


# =============================================================================
# REGISTRATION
# =============================================================================

class InvalidRequest(TenantPlatformError):
    """Bad input shape or length. Always local, never retried."""
    status_code = 400
    code = "validation_error"
    public_message = "Invalid request"

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("public_message", message)
        super().__init__(message, **kwargs)


class RegistrationValidationError(InvalidRequest):
    public_message = "Invalid registration data"


class EmailAlreadyInUse(TenantPlatformError):
    status_code = 409
    code = "email_in_use"
    public_message = "This email address is already in use"


class SlugConflict(TenantPlatformError):
    """Slug kept colliding with concurrent registrations."""
    status_code = 409
    code = "slug_conflict"
    public_message = "Could not reserve a shop address, please try again"


class SlugAllocationExhausted(TenantPlatformError):
    status_code = 400
    code = "slug_exhausted"
    public_message = "Could not generate a unique shop address, please choose another business name"


class DependencyFailure(TenantPlatformError):
    """A critical store or provider call failed."""
    status_code = 503
    code = "dependency_failure"
    public_message = "Service temporarily unavailable, please try again later"

    def __init__(self, message: str, *, step: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.step = step
        self.context.setdefault("step", step)


class RegistrationTimeout(DependencyFailure):
    code = "registration_timeout"


# =============================================================================
# AUTHENTICATION
# =============================================================================

class AuthenticationFailed(TenantPlatformError):
    status_code = 401
    code = "authentication_failed"
    public_message = "Invalid email or password"


class InvalidSessionToken(TenantPlatformError):
    status_code = 401
    code = "invalid_session"
    public_message = "Not authorized or session invalid"


class TenantNotFound(TenantPlatformError):
    status_code = 404
    code = "not_found"
    public_message = "Tenant not found"


class TenantAccessDenied(TenantPlatformError):
    """Generic denial; the real reason stays in the logs."""
    status_code = 403
    code = "forbidden"
    public_message = "Not authorized or session invalid"


class VerificationTokenError(TenantPlatformError):
    status_code = 400
    code = "invalid_token"
    public_message = "This verification link is invalid"


class VerificationTokenExpired(VerificationTokenError):
    code = "expired_token"
    public_message = "This verification link has expired"


class PasswordResetTokenError(TenantPlatformError):
    status_code = 400
    code = "invalid_reset_token"
    public_message = "This password reset link is invalid or has already been used"


class PasswordResetTokenExpired(PasswordResetTokenError):
    code = "expired_reset_token"
    public_message = "This password reset link has expired, please request a new one"


class RateLimitExceeded(TenantPlatformError):
    status_code = 429
    code = "rate_limited"
    public_message = "Too many requests, please try again later"


# =============================================================================
# STORE
# =============================================================================

class RepositoryError(Exception):
    """Genuine I/O or database failure (not "record not found")."""

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation


class DuplicateRecordError(RepositoryError):
    """A storage-level uniqueness constraint rejected the write."""

    def __init__(self, message: str, *, field: str, operation: Optional[str] = None) -> None:
        super().__init__(message, operation=operation)
        self.field = field
