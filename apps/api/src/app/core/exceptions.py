"""
Service Error Taxonomy

Every workflow failure is raised as a ServiceError subclass carrying a
machine-readable error code and the HTTP status it maps to. Routers convert
these into HTTPException responses with a `{"error", "message"}` detail body
via `to_http_exception`.

Token failures are kept distinct from Forbidden so the client knows to request
a fresh link rather than retry.
"""

from fastapi import HTTPException, status


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed or missing input."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="VALIDATION_ERROR", status_code=400)


class NotFoundError(ServiceError):
    """Requested entity does not exist."""

    def __init__(self, entity: str, entity_id: object | None = None):
        message = f"{entity} {entity_id} not found" if entity_id else f"{entity} not found"
        super().__init__(message=message, error_code="NOT_FOUND", status_code=404)


class ConflictError(ServiceError):
    """A uniqueness invariant would be violated or a concurrent update won."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="CONFLICT", status_code=409)


class ForbiddenError(ServiceError):
    """Actor mismatch, wrong role, or not a participant."""

    def __init__(self, message: str = "You are not allowed to perform this action."):
        super().__init__(message=message, error_code="FORBIDDEN", status_code=403)


class TokenInvalidError(ServiceError):
    """Token signature, shape or purpose is wrong."""

    def __init__(self, message: str = "Invalid or malformed token."):
        super().__init__(message=message, error_code="TOKEN_INVALID", status_code=400)


class TokenExpiredError(ServiceError):
    """Token is past its expiry."""

    def __init__(self, message: str = "This link has expired. Please request a new one."):
        super().__init__(message=message, error_code="TOKEN_EXPIRED", status_code=410)


class TokenRevokedError(ServiceError):
    """A newer token was issued for the same subject, or the token was already used."""

    def __init__(self, message: str = "This link is no longer valid. Please request a new one."):
        super().__init__(message=message, error_code="TOKEN_REVOKED", status_code=410)


class AlreadyProcessedError(ServiceError):
    """Entity is in a terminal state."""

    def __init__(self, message: str = "This request has already been processed."):
        super().__init__(message=message, error_code="ALREADY_PROCESSED", status_code=410)


class InternalServiceError(ServiceError):
    """Storage or transport failure."""

    def __init__(self, message: str = "An unexpected error occurred. Please try again later."):
        super().__init__(message=message, error_code="INTERNAL_ERROR", status_code=500)


def to_http_exception(error: ServiceError) -> HTTPException:
    """Convert a ServiceError into the API's HTTPException shape."""
    return HTTPException(
        status_code=error.status_code,
        detail={
            "error": error.error_code,
            "message": error.message,
        },
    )


def internal_http_exception() -> HTTPException:
    """Generic 500 response used when an unexpected exception escapes a service."""
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


__all__ = [
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ForbiddenError",
    "TokenInvalidError",
    "TokenExpiredError",
    "TokenRevokedError",
    "AlreadyProcessedError",
    "InternalServiceError",
    "to_http_exception",
    "internal_http_exception",
]
