"""
Magic Link Service

Issue, inspect and consume single-use magic links.

Security considerations:
- Tokens are 32 random bytes (64 hex chars) from the secrets module
- Only the SHA-256 hash is stored, lookups hash the presented token
- Consumption is a single conditional UPDATE, so a token can be used once
  even under concurrent requests
- Expired tokens are deleted by a scheduled job; every read also checks
  expires_at
"""

import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    NotFoundError,
    TokenExpiredError,
    TokenInvalidError,
    TokenRevokedError,
)
from app.core.security import hash_password
from app.modules.auth.schemas import MagicLinkPreviewResponse, MagicLinkSessionResponse
from app.modules.auth.service import build_session, to_user_response
from app.modules.magic_links import repository
from app.modules.magic_links.models import MagicLinkToken, MagicLinkType
from app.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
DEFAULT_REDIRECT = "/dashboard"


def _hash_token(token: str) -> str:
    """SHA-256 hex digest used as the storage key."""
    return hashlib.sha256(token.encode()).hexdigest()


def magic_link_url(token: str, redirect: str | None = None) -> str:
    """Frontend URL that opens a magic link."""
    url = f"{settings.frontend_url}/auth/magic-link/{token}"
    if redirect:
        url = f"{url}?redirect={redirect}"
    return url


def _is_local_path(value: str) -> bool:
    # Browsers read a backslash as a slash and drop tabs and newlines
    if not value.startswith("/") or value[1:2] == "/":
        return False
    if "\\" in value or any(ch.isspace() or ord(ch) < 32 for ch in value):
        return False
    parts = urlsplit(value)
    return not parts.scheme and not parts.netloc


def resolve_redirect(context: dict[str, Any] | None, requested: str | None = None) -> str:
    """
    Where to send the user after sign-in.

    A requested redirect wins if it is a same-site path; otherwise the chat
    in the token context, otherwise the dashboard.
    """
    if requested and _is_local_path(requested):
        return requested
    chat_id = (context or {}).get("chat_id")
    if chat_id:
        return f"/bg-chat/{chat_id}"
    return DEFAULT_REDIRECT


async def issue_magic_link_token(
    db: AsyncSession,
    email: str,
    type: MagicLinkType,
    context: dict[str, Any] | None = None,
) -> str:
    """
    Create a magic link token in the caller's transaction.

    Returns:
        The plain token, to be placed in the emailed link
    """
    token = secrets.token_hex(TOKEN_BYTES)
    expires_at = datetime.now(UTC) + timedelta(days=settings.magic_link_ttl_days)

    await repository.create(
        db,
        token_hash=_hash_token(token),
        email=email.strip().lower(),
        type=type,
        context={k: str(v) for k, v in (context or {}).items() if v is not None},
        expires_at=expires_at,
    )
    logger.info(f"Issued {type.value} magic link expiring {expires_at.isoformat()}")
    return token


def _check_usable(magic_link: MagicLinkToken | None, now: datetime) -> MagicLinkToken:
    if magic_link is None:
        raise TokenInvalidError("Invalid magic link.")
    if magic_link.used:
        raise TokenRevokedError("This magic link has already been used.")
    if magic_link.expires_at <= now:
        raise TokenExpiredError("This magic link has expired.")
    return magic_link


async def peek_magic_link(
    db: AsyncSession,
    token: str,
    redirect: str | None = None,
) -> MagicLinkPreviewResponse:
    """
    Validate a magic link without consuming it.

    Raises:
        TokenInvalidError: Unknown token
        TokenRevokedError: Already used
        TokenExpiredError: Past expiry
        NotFoundError: No account for the token's email
    """
    now = datetime.now(UTC)
    magic_link = _check_usable(await repository.get_by_hash(db, _hash_token(token)), now)

    user = await UserRepository.get_by_email(db, magic_link.email)
    if not user:
        raise NotFoundError("User")

    return MagicLinkPreviewResponse(
        valid=True,
        email=magic_link.email,
        type=magic_link.type.value,
        user=to_user_response(user),
        redirect=resolve_redirect(magic_link.context, redirect),
    )


async def consume_magic_link_and_set_password(
    db: AsyncSession,
    token: str,
    password: str,
) -> MagicLinkSessionResponse:
    """
    Consume a magic link, set the account password and sign the user in.

    The token is marked used, the password set and the email marked
    verified in one transaction. If the account is missing nothing is
    committed.

    Raises:
        TokenInvalidError / TokenRevokedError / TokenExpiredError
        NotFoundError: No account for the token's email
    """
    now = datetime.now(UTC)
    token_hash = _hash_token(token)

    magic_link = await repository.consume(db, token_hash, now)
    if magic_link is None:
        # Work out why for the error message; this read never consumes
        _check_usable(await repository.get_by_hash(db, token_hash), now)
        raise TokenRevokedError("This magic link has already been used.")

    user = await UserRepository.get_by_email(db, magic_link.email)
    if not user:
        await db.rollback()
        raise NotFoundError("User")

    await UserRepository.set_password(db, user.id, hash_password(password))
    await db.commit()
    await db.refresh(user)

    logger.info(f"Magic link consumed; password set for user {user.id}")

    session = build_session(user)
    return MagicLinkSessionResponse(
        **session.model_dump(),
        redirect=resolve_redirect(magic_link.context),
    )
