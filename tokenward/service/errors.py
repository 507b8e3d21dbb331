from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    Each class defines both a ``status_code`` and a stable ``error_code`` so a
    transport layer can map errors without inspecting messages:
    - unauthorized (401)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
    - server_error (500)

    ``message`` is safe to show to clients. It never says which credential
    or token check failed.
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "Invalid request"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        message = message or self.default_message
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
    default_message = "Unauthorized"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"
    default_message = "Not found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"
    default_message = "Conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"
    default_message = "An unexpected error occurred"


class DuplicateUsername(ConflictError):
    default_message = "Username already exists"


class DuplicateEmail(ConflictError):
    default_message = "Email already exists"


class CreationFailed(ServerError):
    """The inserted user could not be read back."""
    default_message = "Failed to create user"


class InvalidCredentials(AuthenticationError):
    """Unknown identifier or wrong password; deliberately indistinguishable."""
    default_message = "Invalid credentials"


class MissingToken(ValidationError):
    default_message = "Refresh token is required"


class InvalidOrExpiredToken(AuthenticationError):
    """Malformed, expired or revoked token; deliberately indistinguishable."""
    default_message = "Invalid or expired token"


class UserNotFound(NotFoundError):
    default_message = "User not found"


def describe_error(exc: BaseException) -> dict:
    """Build the client-facing error body for ``exc``.

    Anything that is not a ``ServiceError`` (store faults included) is
    reported as a generic server error.
    """
    if isinstance(exc, ServiceError):
        return {"code": exc.error_code, "message": exc.message}
    return {"code": ServerError.error_code, "message": ServerError.default_message}


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "DuplicateUsername",
    "DuplicateEmail",
    "CreationFailed",
    "InvalidCredentials",
    "MissingToken",
    "InvalidOrExpiredToken",
    "UserNotFound",
    "describe_error",
]
