"""
Authentication and Authorization Module

Provides authentication dependencies for FastAPI endpoints.
Access tokens are validated with the security utilities in security.py and
turned into a CurrentUser built from the token claims (no database lookup).

Role dependencies:
- get_current_user: any authenticated user
- require_verifier: VERIFIER role only
- require_student: STUDENT role only
- get_optional_user: None when no (or an invalid) token is supplied
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import decode_token

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI documentation
security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)

optional_security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    """
    Represents an authenticated user.

    Populated from JWT claims after token validation.

    Attributes:
        id: User's unique identifier (UUID)
        email: User's email address (lowercase)
        role: "STUDENT" or "VERIFIER"
        name: User's display name (optional)
    """

    id: UUID
    email: str
    role: str
    name: str | None = None

    @property
    def is_verifier(self) -> bool:
        return self.role == "VERIFIER"

    @property
    def is_student(self) -> bool:
        return self.role == "STUDENT"

    def __str__(self) -> str:
        return f"CurrentUser(id={self.id}, email={self.email}, role={self.role})"


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _validate_jwt_token(token: str) -> CurrentUser:
    """
    Validate an access token and extract user claims.

    Args:
        token: JWT token string from Authorization header

    Returns:
        CurrentUser built from the token claims

    Raises:
        HTTPException 401: If token is invalid, expired, or not an access token
    """
    payload = decode_token(token)

    if payload is None:
        logger.warning("Invalid or expired JWT token")
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    token_type = payload.get("type", "access")
    if token_type != "access":
        logger.warning(f"Invalid token type: {token_type}")
        raise _unauthorized("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    try:
        return CurrentUser(
            id=UUID(payload["sub"]),
            email=str(payload.get("email", "")).lower(),
            role=payload.get("role", ""),
            name=payload.get("name"),
        )
    except (ValueError, KeyError) as e:
        logger.warning(f"Invalid token claims: {e}")
        raise _unauthorized(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """
    FastAPI dependency that validates the bearer token and returns the user.

    Raises:
        HTTPException 401: If token is missing, invalid, or expired
    """
    user = _validate_jwt_token(credentials.credentials)
    logger.debug(f"Authenticated user: {user.id} ({user.role})")
    return user


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
) -> CurrentUser | None:
    """
    Optional authentication dependency.

    Returns the user if a valid token is provided, or None otherwise. Used by
    endpoints that accept either a session or a workflow token in the body.
    """
    if not credentials:
        return None

    try:
        return _validate_jwt_token(credentials.credentials)
    except HTTPException:
        return None


def _forbidden_role(required: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "error": f"{required}_ACCESS_REQUIRED",
            "message": f"{required.title()} access is required for this endpoint.",
        },
    )


async def require_verifier(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Dependency allowing VERIFIER users only."""
    if not user.is_verifier:
        logger.warning(f"Access denied: user {user.id} has role '{user.role}', VERIFIER required")
        raise _forbidden_role("VERIFIER")
    return user


async def require_student(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Dependency allowing STUDENT users only."""
    if not user.is_student:
        logger.warning(f"Access denied: user {user.id} has role '{user.role}', STUDENT required")
        raise _forbidden_role("STUDENT")
    return user


__all__ = [
    "CurrentUser",
    "get_current_user",
    "get_optional_user",
    "require_verifier",
    "require_student",
]
