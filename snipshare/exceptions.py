"""
SnipShare — Custom Exception Hierarchy
======================================

What:  Application-specific exceptions for different error scenarios.
How:   Each exception class carries a user-facing message and an optional
       context dict. Global exception handlers (registered in main.py) catch
       these and return structured JSON error responses.
Who:   Raised by the backend client, services and dependencies; caught by
       global handlers.

Exception Hierarchy:
    SnipShareError (base)
    ├── ValidationError          → 400 Bad Request (client can fix)
    ├── AuthenticationError      → 401 Unauthorized
    ├── PermissionDeniedError    → 403 Forbidden
    ├── NotFoundError            → 404 Not Found
    ├── LeaseTimeoutError        → 503 Service Unavailable
    ├── BackendError             → status derived from BackendErrorKind
    └── FormFlowError            → status derived from BackendErrorKind

Backend failures are classified once, at the data-access layer, into a
BackendErrorKind. Everything above that layer switches on the kind, never on
message text.
"""

from enum import Enum
from typing import Any, Dict, Optional


class BackendErrorKind(str, Enum):
    """Classification of a failed backend call."""

    TIMEOUT = "timeout"
    PERMISSION_DENIED = "permission_denied"
    CONNECTION = "connection"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"

    @property
    def is_transient(self) -> bool:
        """Kinds worth retrying on read operations."""
        return self in (BackendErrorKind.TIMEOUT, BackendErrorKind.CONNECTION)

    @property
    def status_code(self) -> int:
        """HTTP status this service answers with for the kind."""
        return _KIND_STATUS[self]


_KIND_STATUS = {
    BackendErrorKind.TIMEOUT: 504,
    BackendErrorKind.PERMISSION_DENIED: 403,
    BackendErrorKind.CONNECTION: 503,
    BackendErrorKind.AUTH: 401,
    BackendErrorKind.NOT_FOUND: 404,
    BackendErrorKind.CONFLICT: 409,
    BackendErrorKind.INVALID_REQUEST: 400,
    BackendErrorKind.UNKNOWN: 502,
}


class SnipShareError(Exception):
    """
    Base exception for all SnipShare application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(SnipShareError):
    """
    Raised when client input fails validation.

    When:    Missing required field, email domain mismatch, password mismatch,
             unknown language. Always raised before any network call.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(SnipShareError):
    """
    Raised when an operation requires a signed-in user and there is none,
    or when credentials are rejected.

    HTTP:    401 Unauthorized
    """

    def __init__(
        self,
        message: str = "You must be signed in to do that",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(SnipShareError):
    """
    Raised when a signed-in user tries to change a row they do not own.

    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "You do not have permission to do that",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(SnipShareError):
    """
    Raised when a requested resource does not exist.

    HTTP:    404 Not Found
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


class LeaseTimeoutError(SnipShareError):
    """
    Raised when no lease could be acquired from the pool in time,
    or the pool was closed while waiting.

    HTTP:    503 Service Unavailable
    """

    def __init__(
        self,
        message: str = "The server is busy. Please try again in a moment.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class BackendError(SnipShareError):
    """
    Raised by the backend client when an auth or table call fails.

    Attributes:
        kind:        BackendErrorKind assigned by the client
        status_code: HTTP status returned by the backend (None for
                     transport failures)
    """

    def __init__(
        self,
        message: str = "The backend request failed",
        kind: BackendErrorKind = BackendErrorKind.UNKNOWN,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["kind"] = kind.value
        if status_code is not None:
            ctx["backend_status"] = status_code
        super().__init__(message=message, context=ctx)
        self.kind = kind
        self.status_code = status_code


class FormFlowError(SnipShareError):
    """
    Raised at a form flow boundary after a backend failure has been turned
    into a message suitable for an inline error banner.

    The original BackendError is chained as __cause__.
    """

    def __init__(
        self,
        message: str,
        kind: BackendErrorKind = BackendErrorKind.UNKNOWN,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["kind"] = kind.value
        super().__init__(message=message, context=ctx)
        self.kind = kind
