"""
Magic Links Repository
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import MagicLinkToken, MagicLinkType


async def create(
    db: AsyncSession,
    *,
    token_hash: str,
    email: str,
    type: MagicLinkType,
    context: dict[str, Any],
    expires_at: datetime,
) -> MagicLinkToken:
    """Store a new unused token."""
    magic_link = MagicLinkToken(
        token_hash=token_hash,
        email=email,
        type=type,
        context=context,
        used=False,
        expires_at=expires_at,
    )
    db.add(magic_link)
    await db.flush()
    return magic_link


async def get_by_hash(db: AsyncSession, token_hash: str) -> MagicLinkToken | None:
    """Look up a token by its hash without changing it."""
    result = await db.execute(select(MagicLinkToken).where(MagicLinkToken.token_hash == token_hash))
    return result.scalar_one_or_none()


async def consume(db: AsyncSession, token_hash: str, now: datetime) -> MagicLinkToken | None:
    """
    Atomically mark an unused, unexpired token as used.

    Returns:
        The consumed token, or None if it does not exist, was already used,
        or has expired
    """
    result = await db.execute(
        update(MagicLinkToken)
        .where(
            MagicLinkToken.token_hash == token_hash,
            MagicLinkToken.used.is_(False),
            MagicLinkToken.expires_at > now,
        )
        .values(used=True, used_at=now)
        .returning(MagicLinkToken)
    )
    return result.scalar_one_or_none()


async def delete_expired(db: AsyncSession, now: datetime) -> int:
    """Garbage-collect expired tokens. Returns rows deleted."""
    result = await db.execute(delete(MagicLinkToken).where(MagicLinkToken.expires_at <= now))
    return result.rowcount
