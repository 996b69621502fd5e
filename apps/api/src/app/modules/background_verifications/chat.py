"""
Chat Room Manager

One chat exists per (background check, requesting verifier, shared contact)
triple. The `uq_bg_chats_participants` constraint enforces it; concurrent
creators race on the insert and the loser re-reads the winner's row.

Only the requesting verifier and the shared contact are participants. The
student is stored for context and can neither read nor write.
"""

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser
from app.core.events import chat_channel, publish_event
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.modules.background_verifications import repository
from app.modules.background_verifications.models import (
    MAX_MESSAGE_LENGTH,
    BackgroundVerificationChat,
    BackgroundVerificationChatMessage,
)

logger = logging.getLogger(__name__)


async def find_or_create_chat(
    db: AsyncSession,
    *,
    bg_verification_id: UUID,
    requesting_verifier_id: UUID,
    requesting_verifier_email: str,
    shared_contact_id: UUID,
    shared_contact_email: str,
    student_id: UUID,
    student_email: str,
) -> tuple[BackgroundVerificationChat, bool]:
    """
    Return the chat for the triple, creating it if absent.

    The session is flushed, not committed.

    Returns:
        Tuple of (chat, created)

    Raises:
        ConflictError: If the insert collided but the winner could not be read
    """
    existing = await repository.get_chat_by_participants(
        db, bg_verification_id, requesting_verifier_id, shared_contact_id
    )
    if existing:
        return existing, False

    try:
        async with db.begin_nested():
            chat = await repository.create_chat(
                db,
                BackgroundVerificationChat(
                    bg_verification_id=bg_verification_id,
                    requesting_verifier_id=requesting_verifier_id,
                    requesting_verifier_email=requesting_verifier_email.lower(),
                    shared_contact_id=shared_contact_id,
                    shared_contact_email=shared_contact_email.lower(),
                    student_id=student_id,
                    student_email=student_email.lower(),
                    is_active=True,
                    messages=[],
                ),
            )
    except IntegrityError:
        logger.info(
            f"Concurrent chat creation for background check {bg_verification_id}, "
            "re-reading existing chat"
        )
        winner = await repository.get_chat_by_participants(
            db, bg_verification_id, requesting_verifier_id, shared_contact_id
        )
        if winner is None:
            raise ConflictError("Chat could not be created. Please try again.") from None
        return winner, False

    logger.info(f"Created chat {chat.id} for background check {bg_verification_id}")
    return chat, True


async def get_chat(
    db: AsyncSession,
    chat_id: UUID,
    user: CurrentUser,
) -> BackgroundVerificationChat:
    """
    Load a chat for one of its participants.

    Raises:
        NotFoundError: Unknown chat
        ForbiddenError: Caller is not a participant
    """
    chat = await repository.get_chat(db, chat_id)
    if not chat:
        raise NotFoundError("Chat", chat_id)
    if not chat.is_participant(user.id):
        raise ForbiddenError("You are not a participant in this chat.")
    return chat


async def list_chats_for_participant(
    db: AsyncSession,
    user: CurrentUser,
) -> list[BackgroundVerificationChat]:
    return await repository.list_chats_for_user(db, user.id)


async def add_message(
    db: AsyncSession,
    chat_id: UUID,
    user: CurrentUser,
    text: str,
) -> BackgroundVerificationChatMessage:
    """
    Append a message to a chat and notify viewers.

    The message is committed before the live event is published; a failed
    publish does not affect it.

    Raises:
        NotFoundError: Unknown chat
        ForbiddenError: Caller is not a participant
        ValidationError: Empty or oversized message, or chat closed
    """
    text = text.strip()
    if not text:
        raise ValidationError("Message cannot be empty.")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters.")

    chat = await get_chat(db, chat_id, user)
    if not chat.is_active:
        raise ValidationError("This chat is closed.")

    now = datetime.now(UTC)
    message = await repository.add_message(
        db,
        BackgroundVerificationChatMessage(
            chat_id=chat.id,
            sender_id=user.id,
            sender_email=user.email,
            sender_name=user.name or user.email,
            sender_role=user.role,
            message=text,
            created_at=now,
        ),
        now,
    )
    await db.commit()

    await publish_event(
        chat_channel(chat.id),
        "bg_message",
        {
            "chat_id": str(chat.id),
            "message": {
                "id": str(message.id),
                "sender_id": str(message.sender_id),
                "sender_email": message.sender_email,
                "sender_name": message.sender_name,
                "sender_role": message.sender_role,
                "message": message.message,
                "created_at": now.isoformat(),
            },
        },
    )
    return message
