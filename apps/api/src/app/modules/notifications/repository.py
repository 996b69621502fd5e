"""
Notification Outbox Repository
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import NotificationKind, OutboxMessage, OutboxStatus


async def add(
    db: AsyncSession,
    kind: NotificationKind,
    payload: dict[str, Any],
) -> OutboxMessage:
    """Queue a notification in the caller's transaction."""
    message = OutboxMessage(
        kind=kind,
        payload=payload,
        status=OutboxStatus.PENDING,
        attempts=0,
        recipient=payload.get("to_email"),
    )
    db.add(message)
    await db.flush()
    return message


async def get_pending(
    db: AsyncSession,
    limit: int,
    ids: list[UUID] | None = None,
) -> list[OutboxMessage]:
    """
    Lock and return PENDING messages, oldest first.

    Rows locked by another dispatcher are skipped.
    """
    stmt = (
        select(OutboxMessage)
        .where(OutboxMessage.status == OutboxStatus.PENDING)
        .order_by(OutboxMessage.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    if ids is not None:
        stmt = stmt.where(OutboxMessage.id.in_(ids))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def purge_processed_before(db: AsyncSession, before: datetime) -> int:
    """Delete SENT and FAILED messages processed before `before`. Payloads may contain link tokens."""
    result = await db.execute(
        delete(OutboxMessage).where(
            OutboxMessage.status.in_((OutboxStatus.SENT, OutboxStatus.FAILED)),
            OutboxMessage.processed_at < before,
        )
    )
    return result.rowcount
