"""
Memora Backend — Error Taxonomy & Exception Hierarchy
=======================================================

What:  One machine-readable error code enum plus application exceptions that
       carry an HTTP status, a code, a user-facing message and debug context.
Why:   Every failure surfaces through the same JSON envelope with a stable
       `code` clients can branch on (e.g. SELECTION_LIMIT_REACHED).
How:   Services raise these; global handlers registered in main.py render
       {"error", "code", "message", "details", "request_id"}.
Who:   Raised by services, dependencies and middleware.

Exception Hierarchy:
    MemoraError (base)                    → 500
    ├── ValidationError                   → 400
    ├── LimitReachedError                 → 400
    ├── WebhookSignatureError             → 400
    ├── AuthenticationError               → 401
    ├── AccessDeniedError                 → 403
    ├── NotFoundError                     → 404
    ├── ConflictError                     → 409
    ├── RateLimitExceededError            → 429
    ├── FileStorageError                  → 500
    ├── DatabaseError                     → 500
    ├── PaymentProviderError              → 502
    └── CircuitBreakerOpenError           → 503
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in the `code` field."""

    # Generic
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATE = "INVALID_STATE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    DATABASE_ERROR = "DATABASE_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Guest access
    GUEST_TOKEN_MISSING = "GUEST_TOKEN_MISSING"
    INVALID_TOKEN = "INVALID_TOKEN"
    EMAIL_NOT_ALLOWED = "EMAIL_NOT_ALLOWED"
    NO_PASSWORD = "NO_PASSWORD"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    INVALID_PIN = "INVALID_PIN"
    SELECTION_NOT_ACCESSIBLE = "SELECTION_NOT_ACCESSIBLE"
    PROOFING_NOT_ACCESSIBLE = "PROOFING_NOT_ACCESSIBLE"
    RAW_FILE_NOT_ACCESSIBLE = "RAW_FILE_NOT_ACCESSIBLE"
    SELECTION_NOT_ACTIVE = "SELECTION_NOT_ACTIVE"
    PROOFING_NOT_ACTIVE = "PROOFING_NOT_ACTIVE"
    RAW_FILE_NOT_ACTIVE = "RAW_FILE_NOT_ACTIVE"

    # Media
    SELECTION_LIMIT_REACHED = "SELECTION_LIMIT_REACHED"
    RAW_FILE_LIMIT_REACHED = "RAW_FILE_LIMIT_REACHED"
    MEDIA_NOT_IN_PHASE = "MEDIA_NOT_IN_PHASE"
    MEDIA_REJECTED = "MEDIA_REJECTED"
    MEDIA_APPROVED = "MEDIA_APPROVED"
    DOWNLOAD_NOT_READY = "DOWNLOAD_NOT_READY"

    # Proofing requests
    REQUEST_ALREADY_PENDING = "REQUEST_ALREADY_PENDING"
    REQUEST_ALREADY_PROCESSED = "REQUEST_ALREADY_PROCESSED"
    OWNER_CANNOT_DECIDE = "OWNER_CANNOT_DECIDE"

    # Billing
    UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"
    PAYMENT_PROVIDER_ERROR = "PAYMENT_PROVIDER_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class MemoraError(Exception):
    """
    Base exception for all Memora application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (returned as `details` except for 5xx)
        code:     ErrorCode for programmatic handling by clients
    """

    status_code: int = 500
    category: str = "server_error"
    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        self.message = message
        self.context = context or {}
        self.code = code or self.default_code
        super().__init__(self.message)


class ValidationError(MemoraError):
    """Client input failed a business rule (schema errors stay FastAPI 422s)."""

    status_code = 400
    category = "validation_error"
    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx, code=code)
        self.field = field


class LimitReachedError(MemoraError):
    """
    Raised when marking one more media item selected would exceed the
    effective limit of its phase or set.

    Carries the limit in force and the counted selections so the client can
    tell the guest how many items they must deselect.
    """

    status_code = 400
    category = "limit_reached"
    default_code = ErrorCode.SELECTION_LIMIT_REACHED

    def __init__(
        self,
        message: str = "Selection limit reached. Cannot select more items.",
        limit: Optional[int] = None,
        current_count: Optional[int] = None,
        code: Optional[ErrorCode] = None,
    ):
        ctx: Dict[str, Any] = {}
        if limit is not None:
            ctx["limit"] = limit
        if current_count is not None:
            ctx["current_count"] = current_count
        super().__init__(message=message, context=ctx, code=code)
        self.limit = limit
        self.current_count = current_count


class WebhookSignatureError(MemoraError):
    """Webhook payload could not be authenticated against the provider secret."""

    status_code = 400
    category = "webhook_error"
    default_code = ErrorCode.WEBHOOK_SIGNATURE_INVALID

    def __init__(
        self,
        provider: str,
        message: str = "Invalid webhook signature",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["provider"] = provider
        super().__init__(message=message, context=ctx)
        self.provider = provider


class AuthenticationError(MemoraError):
    """No usable credential was presented, or a password did not match."""

    status_code = 401
    category = "authentication_error"
    default_code = ErrorCode.UNAUTHENTICATED


class AccessDeniedError(MemoraError):
    """The credential is valid but does not grant this action on this resource."""

    status_code = 403
    category = "access_denied"
    default_code = ErrorCode.FORBIDDEN


class NotFoundError(MemoraError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing rows; the service layer converts None
    into this exception so routes stay free of existence checks. Unknown or
    expired guest tokens use it too.
    """

    status_code = 404
    category = "not_found"
    default_code = ErrorCode.NOT_FOUND

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx, code=code)


class ConflictError(MemoraError):
    """The resource exists but is in a state that does not allow this action."""

    status_code = 409
    category = "conflict"
    default_code = ErrorCode.INVALID_STATE


class RateLimitExceededError(MemoraError):
    """Client exceeded the per-IP request rate limit on public endpoints."""

    status_code = 429
    category = "rate_limit_exceeded"
    default_code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class FileStorageError(MemoraError):
    """
    Raised when file system operations fail (disk full, permission denied).

    The client receives a generic message; paths and OS errors are logged.
    """

    status_code = 500
    category = "server_error"
    default_code = ErrorCode.STORAGE_ERROR

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(MemoraError):
    """
    Raised when database operations fail unexpectedly.

    Security Note:
        The message returned to the client is always generic. SQL, constraint
        names and driver errors are logged server-side only.
    """

    status_code = 500
    category = "server_error"
    default_code = ErrorCode.DATABASE_ERROR

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PaymentProviderError(MemoraError):
    """
    Raised when an outbound call to a payment provider fails after retries.

    HTTP: 502 Bad Gateway. Webhook senders retry on non-2xx, so a transient
    failure here gets redelivered by the provider.
    """

    status_code = 502
    category = "payment_provider_error"
    default_code = ErrorCode.PAYMENT_PROVIDER_ERROR

    def __init__(
        self,
        provider: str,
        message: str = "Payment provider is temporarily unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["provider"] = provider
        super().__init__(message=message, context=ctx)
        self.provider = provider


class CircuitBreakerOpenError(MemoraError):
    """
    Raised when the circuit breaker guarding a provider API is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for M seconds)
        → After M seconds → HALF-OPEN (allow one test call)
        → Test succeeds → CLOSED; test fails → OPEN again
    """

    status_code = 503
    category = "service_unavailable"
    default_code = ErrorCode.SERVICE_UNAVAILABLE

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Payment verification is temporarily unavailable due to repeated failures. "
            f"Retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
