"""
Authentication Service

Session issuing shared by login, invite account creation and magic-link
sign-in.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ForbiddenError, ServiceError
from app.core.security import create_access_token, create_refresh_token, verify_password
from app.modules.auth.schemas import SessionResponse, UserResponse
from app.modules.users.models import User
from app.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)


class InvalidCredentialsError(ServiceError):
    """Raised when email or password is wrong."""

    def __init__(self):
        super().__init__(
            message="Invalid email or password.",
            error_code="INVALID_CREDENTIALS",
            status_code=401,
        )


def to_user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role.value,
        institute=user.institute,
        email_verified=user.email_verified,
        external_contact=user.external_contact,
    )


def create_access_token_for(user: User) -> str:
    """Access token with the claims read by app.core.auth."""
    return create_access_token(
        subject=str(user.id),
        additional_claims={
            "email": user.email,
            "role": user.role.value,
            "name": user.name,
        },
    )


def build_session(user: User) -> SessionResponse:
    """Issue access and refresh tokens for a user."""
    return SessionResponse(
        access_token=create_access_token_for(user),
        refresh_token=create_refresh_token(subject=str(user.id)),
        token_type="bearer",
        user=to_user_response(user),
    )


async def authenticate(db: AsyncSession, email: str, password: str) -> SessionResponse:
    """
    Check credentials and issue a session.

    Placeholder referee accounts have an unusable random password and can
    only sign in through their magic link.

    Raises:
        InvalidCredentialsError: Unknown email or wrong password
        ForbiddenError: Account deactivated
    """
    user = await UserRepository.get_by_email(db, email)

    if not user or not verify_password(password, user.password_hash):
        logger.warning("Login attempt with invalid credentials")
        raise InvalidCredentialsError()

    if not user.is_active:
        logger.warning(f"Login attempt for inactive account: {user.id}")
        raise ForbiddenError("Your account has been deactivated.")

    logger.info(f"User logged in: {user.id} (role: {user.role.value})")
    return build_session(user)
