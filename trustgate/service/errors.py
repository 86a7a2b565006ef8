from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - session_limit (409)
    - rate_limited (429)
    - service_unavailable (503)

    Messages are shown to clients as-is, so they must never say which
    identifier (IP, device or email) triggered a rejection.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class BlockedError(ForbiddenError):
    """Caller is locked out after repeated failures or a honeypot trip (403)."""

    def __init__(
        self,
        message: str = "Too many failed attempts. You are temporarily blocked.",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)


class InvalidCsrfToken(ForbiddenError):
    """Anti-forgery token missing, expired or mismatched (403)."""

    def __init__(self, message: str = "Invalid CSRF token", **kwargs) -> None:
        super().__init__(message, **kwargs)


class LimitExceeded(ServiceError):
    """A cardinality or rate cap was breached; callers must not retry blindly."""
    status_code = 429
    error_code = "rate_limited"


class SessionLimitExceeded(LimitExceeded):
    """User already holds the maximum number of active sessions (409)."""
    status_code = 409
    error_code = "session_limit"

    def __init__(
        self,
        message: str = "Maximum active sessions reached. Please logout from another device.",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)


class RateLimitedError(LimitExceeded):
    """Rate limit exceeded (429)."""

    def __init__(self, message: str = "Too many requests", **kwargs) -> None:
        super().__init__(message, **kwargs)


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "BlockedError",
    "InvalidCsrfToken",
    "LimitExceeded",
    "SessionLimitExceeded",
    "RateLimitedError",
]
