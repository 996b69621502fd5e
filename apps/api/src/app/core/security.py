"""
Security Utilities

Password hashing (bcrypt) and session token handling (PyJWT).

Session tokens carry a `type` claim ("access" or "refresh") so that a refresh
token can never be used where an access token is expected. Purpose-bound
workflow tokens (invite claim, verification action) are issued separately in
app.modules.verifications.tokens and share the same signing key.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt

from app.core.config import settings

logger = logging.getLogger(__name__)

# bcrypt cost factor (2^12 rounds)
BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    """Hash a password with a fresh bcrypt salt."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """
    Check a password against a stored bcrypt hash.

    Returns False for empty or malformed hashes instead of raising.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        logger.warning("Malformed password hash encountered during verification")
        return False


def _encode(payload: dict[str, Any]) -> str:
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(
    subject: str,
    additional_claims: dict[str, Any] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a signed access token.

    Args:
        subject: User ID placed in the `sub` claim
        additional_claims: Extra claims (email, role, name)
        expires_delta: Override for the default lifetime

    Returns:
        Encoded JWT string
    """
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload: dict[str, Any] = {
        "sub": subject,
        "type": "access",
        "iat": now,
        "exp": expire,
    }
    if additional_claims:
        payload.update(additional_claims)
    return _encode(payload)


def create_refresh_token(subject: str) -> str:
    """Create a signed refresh token for the given user ID."""
    now = datetime.now(UTC)
    payload = {
        "sub": subject,
        "type": "refresh",
        "iat": now,
        "exp": now + timedelta(days=settings.refresh_token_expire_days),
    }
    return _encode(payload)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a session token.

    Returns:
        The claims dict, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as e:
        logger.debug(f"Session token rejected: {e}")
        return None
