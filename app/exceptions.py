"""
Irshad Backend: Custom Exception Hierarchy
===========================================

What:  Application-specific exceptions for the different failure scenarios.
How:   Each exception carries a message and an optional context dict.
       Global exception handlers (registered in main.py) map them to HTTP
       status codes and structured JSON error responses.
Who:   Raised by services and middleware; caught by global handlers.

Exception Hierarchy:
    IrshadError (base)
    ├── ValidationError          → 400 Bad Request (client can fix)
    ├── NotFoundError            → 404 Not Found
    ├── ConflictError            → 409 Conflict (duplicate / wrong state)
    ├── DatabaseError            → 500 Internal Server Error
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── PaymentProviderError     → 503 Service Unavailable (Stripe down)
    ├── CircuitBreakerOpenError  → 503 Service Unavailable (circuit open)
    └── WebhookError
        ├── WebhookSignatureError  → 401 (signature did not verify)
        ├── RetryableWebhookError  → 500 (Stripe redelivers the event)
        └── RateMismatchError      → 400 (charged price ≠ tuition)

Webhook errors never reach the global handlers: WebhookProcessor converts
them into the status code Stripe sees (see services/webhook_service.py).
"""

from typing import Any, Dict, Optional


class IrshadError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(IrshadError):
    """
    Raised when client input fails a business rule.

    HTTP: 400 Bad Request. Schema-level problems are still FastAPI's 422;
    this covers the rules that need the database (a closed attendance
    session, a Dugsi enrollment with a batch, a weekday session date).

    `code` is a stable machine-readable identifier such as SESSION_CLOSED
    or INVALID_DAY, returned in `details.code`.

    Example response:
        {
            "error": "validation_error",
            "message": "Cannot modify a closed session",
            "details": {"code": "SESSION_CLOSED", "session_id": "…"}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        if code:
            ctx["code"] = code
        super().__init__(message=message, context=ctx)
        self.field = field
        self.code = code


class NotFoundError(IrshadError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing records; the service layer turns
    that None into this exception.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource


class ConflictError(IrshadError):
    """
    Raised when the request clashes with the current state of a record.

    When: duplicate attendance session, student already withdrawn, family
    already has two parents, teacher already clocked in for the shift.
    HTTP: 409 Conflict
    """

    def __init__(
        self,
        message: str = "The request conflicts with the current state",
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if code:
            ctx["code"] = code
        super().__init__(message=message, context=ctx)
        self.code = code


class DatabaseError(IrshadError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; the context
    (original error type, ids) is logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(IrshadError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP: 429 Too Many Requests, with a Retry-After header.
    """

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


class PaymentProviderError(IrshadError):
    """
    Raised when a Stripe call fails.

    When:  Transient errors after tenacity retries are exhausted, any
           non-transient Stripe error, or an account type with no key.
    HTTP:  503 Service Unavailable
    """

    def __init__(
        self,
        message: str = "The payment provider is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(IrshadError):
    """
    Raised when the Stripe circuit breaker is OPEN.

    State machine:
        CLOSED → after cb_failure_threshold failures → OPEN
        OPEN → after cb_recovery_timeout seconds → HALF_OPEN (one test call)
        HALF_OPEN → success → CLOSED / failure → OPEN
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"The payment provider is temporarily unavailable due to repeated failures. "
            f"Calls will resume in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


# ── Webhook Errors ────────────────────────────────────────────────────────

class WebhookError(IrshadError):
    """Base class for errors raised while handling a Stripe webhook."""


class WebhookSignatureError(WebhookError):
    """The stripe-signature header did not verify against the signing secret."""

    def __init__(self, message: str = "Webhook signature verification failed", context=None):
        super().__init__(message=message, context=context)


class RetryableWebhookError(WebhookError):
    """
    The event references a record that is not there yet.

    Stripe does not guarantee delivery order: `customer.subscription.updated`
    may arrive before `customer.subscription.created` finished. Responding
    500 makes Stripe redeliver the event later.
    """

    def __init__(self, message: str = "Temporary processing error", context=None):
        super().__init__(message=message, context=context)


class RateMismatchError(WebhookError):
    """
    The subscription price differs from the rate the checkout was built for.

    Raised when `items[0].price.unit_amount` does not equal the
    `calculatedRate` recorded in the subscription metadata.
    """

    def __init__(
        self,
        expected: int,
        actual: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"expected": expected, "actual": actual})
        super().__init__(
            message=f"Rate mismatch: expected {expected} cents, subscription charges {actual} cents",
            context=ctx,
        )
        self.expected = expected
        self.actual = actual
