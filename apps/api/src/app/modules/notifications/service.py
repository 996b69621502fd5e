"""
Notification Outbox Service

Side effects of workflow transitions (emails) go through an outbox:

1. The service performing the transition calls `enqueue()` inside its own
   transaction, so the notification is stored iff the transition commits.
2. After commit it calls `dispatch_after_commit()` with the new message ids
   for an immediate best-effort send.
3. The `notifications_dispatch_outbox` job retries anything still PENDING,
   giving up after `outbox_max_attempts`.

Delivery failures are recorded on the outbox row and never affect the entity
whose transition produced the notification.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import async_session_maker
from app.core.email import (
    send_bg_referee_notification,
    send_bg_request_to_student,
    send_magic_link_to_external,
    send_verification_decision,
    send_verification_request,
    send_verifier_invite,
)
from app.modules.notifications import repository
from app.modules.notifications.models import NotificationKind, OutboxMessage, OutboxStatus

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[bool]]


def _handler_for(kind: NotificationKind) -> Handler:
    """Email sender for a notification kind. Payload keys are the sender's keyword arguments."""
    handlers: dict[NotificationKind, Handler] = {
        NotificationKind.VERIFIER_INVITE: send_verifier_invite,
        NotificationKind.VERIFICATION_REQUEST: send_verification_request,
        NotificationKind.VERIFICATION_DECISION: send_verification_decision,
        NotificationKind.BG_REQUEST_TO_STUDENT: send_bg_request_to_student,
        NotificationKind.BG_REFEREE_NOTIFICATION: send_bg_referee_notification,
        NotificationKind.BG_MAGIC_LINK: send_magic_link_to_external,
    }
    return handlers[kind]


async def enqueue(
    db: AsyncSession,
    kind: NotificationKind,
    payload: dict[str, Any],
) -> OutboxMessage:
    """Queue a notification in the caller's transaction."""
    message = await repository.add(db, kind, payload)
    logger.debug(f"Queued {kind.value} notification {message.id}")
    return message


async def deliver(message: OutboxMessage, max_attempts: int) -> bool:
    """
    Attempt to send one message and record the outcome on it.

    Returns:
        True if the message was sent
    """
    message.attempts += 1
    error: str | None = None

    try:
        sent = await _handler_for(message.kind)(**message.payload)
        if not sent:
            error = "Email transport reported failure"
    except Exception as e:
        sent = False
        error = str(e) or type(e).__name__

    now = datetime.now(UTC)
    if sent:
        message.status = OutboxStatus.SENT
        message.processed_at = now
        message.last_error = None
        return True

    message.last_error = error
    if message.attempts >= max_attempts:
        message.status = OutboxStatus.FAILED
        message.processed_at = now
        logger.error(
            f"Giving up on {message.kind.value} notification {message.id} "
            f"after {message.attempts} attempts: {error}"
        )
    else:
        logger.warning(
            f"Delivery of {message.kind.value} notification {message.id} failed "
            f"(attempt {message.attempts}/{max_attempts}): {error}"
        )
    return False


async def dispatch(message_ids: list[UUID] | None = None) -> dict[str, int]:
    """
    Send PENDING outbox messages in a dedicated session.

    Args:
        message_ids: Restrict to these messages (post-commit dispatch);
            None processes the oldest pending batch

    Returns:
        Counts of processed, sent and failed messages
    """
    results = {"processed": 0, "sent": 0, "failed": 0}

    async with async_session_maker() as db:
        messages = await repository.get_pending(db, limit=settings.outbox_batch_size, ids=message_ids)

        for message in messages:
            results["processed"] += 1
            if await deliver(message, settings.outbox_max_attempts):
                results["sent"] += 1
            else:
                results["failed"] += 1

        await db.commit()

    return results


async def dispatch_after_commit(messages: list[OutboxMessage]) -> None:
    """Best-effort immediate send of freshly committed messages. Never raises."""
    if not messages:
        return

    try:
        await dispatch([m.id for m in messages])
    except Exception as e:
        logger.error(f"Post-commit notification dispatch failed, job will retry: {e}")
