"""
Background Verification Repository

Database access for background checks and their chats. Functions flush but
never commit; transaction boundaries belong to the service layer.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.background_verifications.models import (
    BackgroundVerification,
    BackgroundVerificationChat,
    BackgroundVerificationChatMessage,
    BackgroundVerificationStatus,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (BackgroundVerificationStatus.PENDING, BackgroundVerificationStatus.SUBMITTED)


def _active(now: datetime):
    return and_(
        BackgroundVerification.status.in_(ACTIVE_STATUSES),
        BackgroundVerification.completed.is_(False),
        BackgroundVerification.expires_at > now,
    )


# ============================================
# Background verifications
# ============================================


async def get_by_id(db: AsyncSession, request_id: UUID) -> BackgroundVerification | None:
    return await db.get(BackgroundVerification, request_id)


async def get_active_for_pair(
    db: AsyncSession,
    student_id: UUID,
    verifier_id: UUID,
    now: datetime,
) -> BackgroundVerification | None:
    result = await db.execute(
        select(BackgroundVerification).where(
            BackgroundVerification.student_id == student_id,
            BackgroundVerification.verifier_id == verifier_id,
            _active(now),
        )
    )
    return result.scalar_one_or_none()


async def get_students_with_active_request(
    db: AsyncSession,
    verifier_id: UUID,
    student_ids: list[UUID],
    now: datetime,
) -> set[UUID]:
    """Subset of student_ids that have an active request from this verifier."""
    if not student_ids:
        return set()
    result = await db.execute(
        select(BackgroundVerification.student_id).where(
            BackgroundVerification.verifier_id == verifier_id,
            BackgroundVerification.student_id.in_(student_ids),
            _active(now),
        )
    )
    return set(result.scalars().all())


async def delete_expired_for_pair(
    db: AsyncSession,
    student_id: UUID,
    verifier_id: UUID,
    now: datetime,
) -> int:
    """Remove expired rows for a pair so they stop occupying the unique index."""
    result = await db.execute(
        delete(BackgroundVerification).where(
            BackgroundVerification.student_id == student_id,
            BackgroundVerification.verifier_id == verifier_id,
            BackgroundVerification.expires_at <= now,
        )
    )
    return result.rowcount or 0


async def delete_expired(db: AsyncSession, now: datetime) -> int:
    result = await db.execute(
        delete(BackgroundVerification).where(BackgroundVerification.expires_at <= now)
    )
    return result.rowcount or 0


async def create(db: AsyncSession, request: BackgroundVerification) -> BackgroundVerification:
    db.add(request)
    await db.flush()
    return request


async def submit_references(
    db: AsyncSession,
    request_id: UUID,
    student_id: UUID,
    referee_contacts: list[dict[str, Any]],
    now: datetime,
) -> bool:
    """
    Move a PENDING, unexpired request to SUBMITTED.

    Returns:
        True if this call performed the transition
    """
    result = await db.execute(
        update(BackgroundVerification)
        .where(
            BackgroundVerification.id == request_id,
            BackgroundVerification.student_id == student_id,
            BackgroundVerification.status == BackgroundVerificationStatus.PENDING,
            BackgroundVerification.expires_at > now,
        )
        .values(
            status=BackgroundVerificationStatus.SUBMITTED,
            referee_contacts=referee_contacts,
            submitted_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def mark_completed(
    db: AsyncSession,
    request_id: UUID,
    verifier_id: UUID,
    now: datetime,
) -> bool:
    """Set the completed flag once. Returns True if this call set it."""
    result = await db.execute(
        update(BackgroundVerification)
        .where(
            BackgroundVerification.id == request_id,
            BackgroundVerification.verifier_id == verifier_id,
            BackgroundVerification.completed.is_(False),
        )
        .values(completed=True, completed_at=now, completed_by=verifier_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def list_for_student(
    db: AsyncSession,
    student_id: UUID,
    now: datetime,
) -> list[BackgroundVerification]:
    result = await db.execute(
        select(BackgroundVerification)
        .where(BackgroundVerification.student_id == student_id, _active(now))
        .order_by(BackgroundVerification.requested_at.desc())
    )
    return list(result.scalars().all())


async def list_for_verifier(
    db: AsyncSession,
    verifier_id: UUID,
    now: datetime,
    *,
    status: BackgroundVerificationStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[BackgroundVerification], int]:
    """
    A verifier's unexpired requests, newest first.

    Completed requests stay visible here; they only leave the list on expiry.
    """
    filters = [
        BackgroundVerification.verifier_id == verifier_id,
        BackgroundVerification.expires_at > now,
    ]
    if status is not None:
        filters.append(BackgroundVerification.status == status)

    total = await db.scalar(
        select(func.count()).select_from(BackgroundVerification).where(*filters)
    )
    result = await db.execute(
        select(BackgroundVerification)
        .where(*filters)
        .order_by(BackgroundVerification.requested_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def list_shared_with(
    db: AsyncSession,
    email: str,
    now: datetime,
) -> list[BackgroundVerification]:
    """SUBMITTED, unexpired requests that list this email as a referee."""
    result = await db.execute(
        select(BackgroundVerification)
        .where(
            BackgroundVerification.status == BackgroundVerificationStatus.SUBMITTED,
            BackgroundVerification.expires_at > now,
            BackgroundVerification.referee_contacts.contains([{"email": email.lower()}]),
        )
        .order_by(BackgroundVerification.submitted_at.desc())
    )
    return list(result.scalars().all())


# ============================================
# Chats
# ============================================


async def get_chat(db: AsyncSession, chat_id: UUID) -> BackgroundVerificationChat | None:
    return await db.get(BackgroundVerificationChat, chat_id)


async def get_chat_by_participants(
    db: AsyncSession,
    bg_verification_id: UUID,
    requesting_verifier_id: UUID,
    shared_contact_id: UUID,
) -> BackgroundVerificationChat | None:
    result = await db.execute(
        select(BackgroundVerificationChat).where(
            BackgroundVerificationChat.bg_verification_id == bg_verification_id,
            BackgroundVerificationChat.requesting_verifier_id == requesting_verifier_id,
            BackgroundVerificationChat.shared_contact_id == shared_contact_id,
        )
    )
    return result.scalar_one_or_none()


async def create_chat(db: AsyncSession, chat: BackgroundVerificationChat) -> BackgroundVerificationChat:
    db.add(chat)
    await db.flush()
    return chat


async def list_chats_for_user(db: AsyncSession, user_id: UUID) -> list[BackgroundVerificationChat]:
    result = await db.execute(
        select(BackgroundVerificationChat)
        .where(
            BackgroundVerificationChat.is_active.is_(True),
            or_(
                BackgroundVerificationChat.requesting_verifier_id == user_id,
                BackgroundVerificationChat.shared_contact_id == user_id,
            ),
        )
        .order_by(
            BackgroundVerificationChat.last_message_at.desc().nulls_last(),
            BackgroundVerificationChat.created_at.desc(),
        )
    )
    return list(result.scalars().all())


async def add_message(
    db: AsyncSession,
    message: BackgroundVerificationChatMessage,
    now: datetime,
) -> BackgroundVerificationChatMessage:
    """Insert a message and stamp the chat's last_message_at."""
    db.add(message)
    await db.execute(
        update(BackgroundVerificationChat)
        .where(BackgroundVerificationChat.id == message.chat_id)
        .values(last_message_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return message
