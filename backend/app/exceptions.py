"""
SuperClip Backend — Application Errors
========================================

What:  A single tagged failure type, `AppError`, whose `kind` decides the HTTP
       status and machine-readable error code.
How:   Services raise `AppError(ErrorKind.X, message, details)`. One global
       handler registered in main.py renders every kind the same way.
Who:   Raised by services and request-gate dependencies; caught by main.py.

Error kinds:
    VALIDATION        → 400 Bad Request
    UNAUTHENTICATED   → 401 Unauthorized      (missing/invalid/expired token)
    PAYMENT_REQUIRED  → 402 Payment Required  (subscription expired)
    FORBIDDEN         → 403 Forbidden         (feature not in plan)
    NOT_FOUND         → 404 Not Found
    CONFLICT          → 409 Conflict
    QUOTA_EXCEEDED    → 429 Too Many Requests (plan usage limit reached)
    RATE_LIMITED      → 429 Too Many Requests (per-IP limiter)
    CONFIGURATION     → 500 Internal Server Error
    DATABASE          → 500 Internal Server Error
    INTERNAL          → 500 Internal Server Error

`details` is returned to the client for 4xx kinds only. For 5xx kinds it is
logged server-side and the client receives a generic message.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Tag for an `AppError`: each member is ``(code, http_status)``."""

    VALIDATION = ("validation_error", 400)
    UNAUTHENTICATED = ("unauthorized", 401)
    PAYMENT_REQUIRED = ("payment_required", 402)
    FORBIDDEN = ("forbidden", 403)
    NOT_FOUND = ("not_found", 404)
    CONFLICT = ("conflict", 409)
    QUOTA_EXCEEDED = ("quota_exceeded", 429)
    RATE_LIMITED = ("rate_limit_exceeded", 429)
    CONFIGURATION = ("configuration_error", 500)
    DATABASE = ("server_error", 500)
    INTERNAL = ("internal_server_error", 500)

    def __init__(self, code: str, http_status: int):
        self.code = code
        self.http_status = http_status

    @property
    def is_client_error(self) -> bool:
        return self.http_status < 500


_DEFAULT_MESSAGES = {
    ErrorKind.VALIDATION: "Validation failed",
    ErrorKind.UNAUTHENTICATED: "Authentication required",
    ErrorKind.PAYMENT_REQUIRED: "Your subscription has expired. Please renew to continue.",
    ErrorKind.FORBIDDEN: "You do not have permission to perform this action",
    ErrorKind.NOT_FOUND: "The requested resource was not found",
    ErrorKind.CONFLICT: "Resource conflict",
    ErrorKind.QUOTA_EXCEEDED: "Usage limit reached for your current subscription plan",
    ErrorKind.RATE_LIMITED: "Too many requests. Please try again later.",
    ErrorKind.CONFIGURATION: "The server is not configured correctly",
    ErrorKind.DATABASE: "A database error occurred. Please try again later.",
    ErrorKind.INTERNAL: "An unexpected error occurred",
}


class AppError(Exception):
    """
    The one failure type raised by application code.

    Attributes:
        kind:     ErrorKind tag (decides status code and error code)
        message:  Human-readable description
        details:  Structured context; returned to clients for 4xx kinds only
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        self.details = details or {}
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return self.kind.http_status

    @property
    def code(self) -> str:
        return self.kind.code

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize for an HTTP response body.

        Server-side kinds never expose their details or original message.
        """
        if not self.kind.is_client_error:
            return {"error": self.code, "message": _DEFAULT_MESSAGES[self.kind]}
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"AppError(kind={self.kind.name}, message={self.message!r})"
