"""
Domain errors for the authentication core.

Services raise these; the orchestrator lets them propagate after rolling
back, and the HTTP layer maps ``kind`` to a status code and the response
envelope. ``Unauthorized.reason`` is for logs only and never leaves the
process.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    UPSTREAM = "upstream"


class AuthError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationFailed(AuthError):
    kind = ErrorKind.VALIDATION


class NotFound(AuthError):
    kind = ErrorKind.NOT_FOUND


class Conflict(AuthError):
    kind = ErrorKind.CONFLICT


class Unauthorized(AuthError):
    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, message: str = "Invalid credentials", reason: str = "invalid", details: Optional[dict[str, Any]] = None):
        super().__init__(message, details)
        self.reason = reason

    @property
    def is_expiry(self) -> bool:
        return self.reason.endswith("_expired")


class ProviderError(Unauthorized):
    """OAuth provider could not be reached or returned garbage."""

    kind = ErrorKind.UPSTREAM

    def __init__(self, provider: str, message: str = "Invalid OAuth token"):
        super().__init__(message, reason="oauth_provider_error", details={"provider": provider})
        self.provider = provider
