from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Subclasses fix the status_code and the stable error_code rendered in the
    response envelope. Request-body validation (400) and uncaught errors (500)
    are rendered by the API layer directly and need no subclass here.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class AuthenticationError(ServiceError):
    """Credentials or bearer token missing or rejected (401)."""
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Duplicate creation, e.g. an email that is already registered (409)."""
    status_code = 409
    error_code = "conflict"


class ServiceUnavailableError(ServiceError):
    """The token store could not be reached; safe to retry with backoff (503)."""
    status_code = 503
    error_code = "service_unavailable"


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "NotFoundError",
    "ConflictError",
    "ServiceUnavailableError",
]
