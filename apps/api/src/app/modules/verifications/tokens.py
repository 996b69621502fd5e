"""
Verification Token Issuer

Signed, purpose-bound tokens for the verifier invite flow.

Two purposes exist:
- invite_claim: long-lived (72h), proves an email address was invited
- verification_action: short-lived (30m), proves the holder accepted the
  invite and may decide on the claim right now

Each token carries a fresh random jti. The invite row stores the jti of the
one token it currently honours; minting a new token overwrites that jti,
which revokes every earlier token for the same invite. This single active
token per invite is the only revocation mechanism.

Payload: {sub: invite_id, purpose, jti, email, iat, exp}
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt

from app.core.config import settings
from app.core.exceptions import TokenExpiredError, TokenInvalidError, TokenRevokedError

logger = logging.getLogger(__name__)

PURPOSE_INVITE_CLAIM = "invite_claim"
PURPOSE_VERIFICATION_ACTION = "verification_action"


@dataclass(frozen=True)
class IssuedToken:
    """A freshly minted token plus the values the caller must persist."""

    token: str
    jti: str
    expires_at: datetime


def _issue(invite_id: UUID, email: str, purpose: str, ttl_seconds: int) -> IssuedToken:
    now = datetime.now(UTC)
    expires_at = now + timedelta(seconds=ttl_seconds)
    jti = str(uuid.uuid4())
    payload = {
        "sub": str(invite_id),
        "purpose": purpose,
        "jti": jti,
        "email": email.strip().lower(),
        "iat": now,
        "exp": expires_at,
    }
    token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return IssuedToken(token=token, jti=jti, expires_at=expires_at)


def issue_invite_claim_token(
    invite_id: UUID,
    email: str,
    ttl_seconds: int | None = None,
) -> IssuedToken:
    """
    Mint an invite-claim token.

    The caller must store `jti` and `expires_at` on the invite, replacing
    any previous values.
    """
    ttl = ttl_seconds if ttl_seconds is not None else settings.invite_ttl_hours * 3600
    return _issue(invite_id, email, PURPOSE_INVITE_CLAIM, ttl)


def issue_action_token(
    invite_id: UUID,
    email: str,
    ttl_seconds: int | None = None,
) -> IssuedToken:
    """Mint a verification-action token. Stored as action_token_jti on the invite."""
    ttl = ttl_seconds if ttl_seconds is not None else settings.action_ttl_minutes * 60
    return _issue(invite_id, email, PURPOSE_VERIFICATION_ACTION, ttl)


def decode_invite_token(token: str, expected_purposes: set[str]) -> dict[str, Any]:
    """
    Verify a token's signature and expiry and check its purpose.

    Args:
        token: Encoded token
        expected_purposes: Purposes accepted by the calling operation

    Returns:
        The token claims

    Raises:
        TokenExpiredError: If the token is past its expiry
        TokenInvalidError: If signature, shape or purpose is wrong
    """
    if not token:
        raise TokenInvalidError("A token is required.")

    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub", "jti"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError() from e
    except jwt.PyJWTError as e:
        logger.warning(f"Invite token rejected: {type(e).__name__}")
        raise TokenInvalidError() from e

    if claims.get("purpose") not in expected_purposes:
        logger.warning(f"Invite token with unexpected purpose: {claims.get('purpose')}")
        raise TokenInvalidError("Invalid token purpose.")

    if not claims.get("email"):
        raise TokenInvalidError("Token is missing its email binding.")

    return claims


def token_subject(claims: dict[str, Any]) -> UUID:
    """Return the invite id embedded in the token."""
    try:
        return UUID(claims["sub"])
    except (KeyError, ValueError) as e:
        raise TokenInvalidError() from e


def ensure_subject(claims: dict[str, Any], invite_id: UUID) -> None:
    """Raise TokenInvalidError if the token was issued for a different invite."""
    if token_subject(claims) != invite_id:
        raise TokenInvalidError("Token does not belong to this invite.")


def ensure_current_jti(claims: dict[str, Any], stored_jti: str | None) -> None:
    """
    Raise TokenRevokedError unless the token is the one currently honoured.

    A mismatch means a newer token has been minted for the same invite.
    """
    if not stored_jti or claims.get("jti") != stored_jti:
        raise TokenRevokedError()
