"""
core/errors.py -- Application exception taxonomy.

Every error that should reach a client as a structured response derives from
AppError. Each subclass fixes an HTTP status_code and a stable error code; the
single AppError handler in api/main.py turns any of them into the error
envelope {success: false, message, error: {code, ...}}.

Service code raises these; route code never builds error JSON by hand.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/,
vendors/, or cache/.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 500
    code: str = "server_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}


class ValidationError(AppError):
    """Request is malformed or violates a business rule (400)."""

    status_code = 400
    code = "validation_error"


class AuthenticationError(AppError):
    """Credentials missing, malformed, or rejected (401)."""

    status_code = 401
    code = "unauthorized"


class AuthorizationError(AppError):
    """Authenticated but not permitted (403)."""

    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class RateLimitedError(AppError):
    """Rate limit exceeded (429). retry_after is in seconds."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServiceUnavailableError(AppError):
    """A collaborator (identity provider, SMTP) is unreachable (500)."""

    status_code = 500
    code = "service_unavailable"


class PartialFailureError(AppError):
    """A multi-step write failed and could not be fully rolled back (500).

    details carries the failed step and the compensations that did not run
    cleanly, so the inconsistency can be repaired by an operator.
    """

    status_code = 500
    code = "partial_failure"


__all__ = [
    "AppError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "RateLimitedError",
    "ServiceUnavailableError",
    "PartialFailureError",
]
