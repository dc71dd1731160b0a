"""rescue_shared.errors — Error taxonomy for the volunteer Lambdas.

Handlers raise these; the Lambda entry points render them through
``http_utils._error_from_exception`` with the carried status and code.
"""

from __future__ import annotations

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "CapacityExceededError",
    "ConflictError",
    "IdentityProviderError",
    "NotFoundError",
    "RescueError",
    "UnexpectedStoreError",
    "ValidationError",
]


class RescueError(Exception):
    """Base error with an HTTP status and a machine-readable code."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(RescueError):
    status_code = 400
    code = "INVALID_INPUT"


class AuthenticationError(RescueError):
    status_code = 401
    code = "UNAUTHENTICATED"


class AuthorizationError(RescueError):
    status_code = 403
    code = "PERMISSION_DENIED"


class NotFoundError(RescueError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(RescueError):
    """Duplicate sign-up, or a record changed between read and write."""

    status_code = 409
    code = "CONFLICT"


class CapacityExceededError(ConflictError):
    """The role has no approved spots left."""

    status_code = 400
    code = "CAPACITY_EXCEEDED"


class UnexpectedStoreError(RescueError):
    status_code = 500
    code = "STORE_ERROR"


class IdentityProviderError(RescueError):
    """The user pool signing keys could not be loaded."""

    status_code = 503
    code = "IDENTITY_PROVIDER_UNAVAILABLE"

