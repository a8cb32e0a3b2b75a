"""
Exception taxonomy shared by services, workers and the HTTP layer.

Every error carries a stable machine-readable ``error_code``, an HTTP
``status_code`` and optional ``details``. The HTTP layer renders them in
backend.app.error_handlers; workers only look at the type.

Client-caused:
    ValidationError, AuthenticationError, AuthorizationError,
    ResourceNotFoundError, DuplicateResourceError, BusinessRuleError,
    AccountLockedError, RateLimitExceededError

Infrastructure:
    DatabaseError, CacheError, QueueError, UnknownJobTypeError
"""

from typing import Any


class TaskFlowError(Exception):
    """Base class for all application errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message, "details": self.details}


# =============================================================================
# Client errors
# =============================================================================


class ValidationError(TaskFlowError):
    """Malformed or out-of-policy input. ``details["errors"]`` lists field failures."""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation failed", errors: list[dict[str, Any]] | None = None):
        super().__init__(message, details={"errors": errors or []})
        self.errors = errors or []


class AuthenticationError(TaskFlowError):
    status_code = 401
    error_code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class AuthorizationError(TaskFlowError):
    status_code = 403
    error_code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class ResourceNotFoundError(TaskFlowError):
    """
    Entity absent, or present but owned by someone else.

    The two cases produce the same message so callers cannot probe for
    other users' records.
    """

    status_code = 404
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier: Any | None = None):
        if identifier is not None:
            message = f"{resource} with identifier '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, details={"resource": resource})
        self.resource = resource
        self.identifier = identifier


class DuplicateResourceError(TaskFlowError):
    status_code = 409
    error_code = "DUPLICATE_RESOURCE"

    def __init__(self, resource: str, field: str, value: Any):
        super().__init__(
            f"{resource} with {field} '{value}' already exists",
            details={"resource": resource, "field": field},
        )


class BusinessRuleError(TaskFlowError):
    status_code = 422
    error_code = "BUSINESS_LOGIC_ERROR"


class AccountLockedError(BusinessRuleError):
    """Too many failed sign-in attempts; ``retry_after`` is in seconds."""

    status_code = 423
    error_code = "ACCOUNT_LOCKED"

    def __init__(self, retry_after: int):
        minutes = max(1, -(-retry_after // 60))
        super().__init__(
            f"Account temporarily locked due to too many failed attempts. "
            f"Try again in {minutes} minute(s).",
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class RateLimitExceededError(TaskFlowError):
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        limit: int,
        window_ms: int,
        retry_after: int,
        headers: dict[str, str] | None = None,
        message: str | None = None,
    ):
        super().__init__(
            message or f"Rate limit exceeded. Try again in {retry_after} seconds.",
            details={"limit": limit, "window_ms": window_ms, "retry_after": retry_after},
        )
        self.limit = limit
        self.window_ms = window_ms
        self.retry_after = retry_after
        self.headers = headers or {}


# =============================================================================
# Infrastructure errors
# =============================================================================


class DatabaseError(TaskFlowError):
    status_code = 500
    error_code = "DATABASE_ERROR"

    def __init__(self, operation: str, cause: Exception | None = None):
        super().__init__(
            f"Database operation failed: {operation}",
            details={"operation": operation, "cause": type(cause).__name__ if cause else None},
        )
        self.operation = operation


class CacheError(TaskFlowError):
    status_code = 500
    error_code = "CACHE_ERROR"

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        super().__init__(
            f"Cache operation failed: {operation}",
            details={"operation": operation, "key": key, "cause": str(cause) if cause else None},
        )
        self.operation = operation
        self.key = key


class QueueError(TaskFlowError):
    status_code = 500
    error_code = "QUEUE_ERROR"

    def __init__(self, event_type: str, cause: Exception | None = None):
        super().__init__(
            f"Failed to enqueue '{event_type}'",
            details={"event_type": event_type, "cause": str(cause) if cause else None},
        )
        self.event_type = event_type


class UnknownJobTypeError(TaskFlowError):
    status_code = 500
    error_code = "UNKNOWN_JOB_TYPE"

    def __init__(self, event_type: str):
        super().__init__(f"Unknown job type: {event_type}", details={"event_type": event_type})
        self.event_type = event_type


__all__ = [
    "TaskFlowError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "ResourceNotFoundError",
    "DuplicateResourceError",
    "BusinessRuleError",
    "AccountLockedError",
    "RateLimitExceededError",
    "DatabaseError",
    "CacheError",
    "QueueError",
    "UnknownJobTypeError",
]
