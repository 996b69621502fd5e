"""
Unit tests for the chat room manager.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from factories import as_current_user, make_bg_request, make_chat, make_user
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.modules.background_verifications.chat import add_message, find_or_create_chat, get_chat
from app.modules.background_verifications.models import (
    MAX_MESSAGE_LENGTH,
    BackgroundVerificationChatMessage,
)
from app.modules.users.models import UserRole

MODULE = "app.modules.background_verifications.chat"


@pytest.fixture
def chat_setup(student_user, verifier_user):
    referee = make_user(role=UserRole.VERIFIER, email="ref@acme.com", name="Rita Referee")
    request = make_bg_request(student_user, verifier_user)
    chat = make_chat(request, referee)
    return request, referee, chat


def _triple(request, referee):
    return {
        "bg_verification_id": request.id,
        "requesting_verifier_id": request.verifier_id,
        "requesting_verifier_email": request.verifier_email,
        "shared_contact_id": referee.id,
        "shared_contact_email": referee.email,
        "student_id": request.student_id,
        "student_email": request.student_email,
    }


class TestFindOrCreateChat:
    """Tests for find_or_create_chat."""

    @pytest.mark.asyncio
    async def test_existing_chat_reused(self, mock_db, chat_setup):
        request, referee, chat = chat_setup
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat_by_participants = AsyncMock(return_value=chat)
            mock_repo.create_chat = AsyncMock()

            result, created = await find_or_create_chat(mock_db, **_triple(request, referee))

            assert result is chat
            assert created is False
            mock_repo.create_chat.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_chat_created(self, mock_db, chat_setup):
        request, referee, chat = chat_setup
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat_by_participants = AsyncMock(return_value=None)
            mock_repo.create_chat = AsyncMock(return_value=chat)

            result, created = await find_or_create_chat(mock_db, **_triple(request, referee))

            assert result is chat
            assert created is True
            new_chat = mock_repo.create_chat.call_args.args[1]
            assert new_chat.shared_contact_email == "ref@acme.com"
            assert new_chat.is_active is True
            mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_creation_returns_winner(self, mock_db, chat_setup):
        """Two creators racing on the same triple end up with one chat."""
        request, referee, chat = chat_setup
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat_by_participants = AsyncMock(side_effect=[None, chat])
            mock_repo.create_chat = AsyncMock(
                side_effect=IntegrityError("INSERT", {}, Exception("uq_bg_chats_participants"))
            )

            result, created = await find_or_create_chat(mock_db, **_triple(request, referee))

            assert result is chat
            assert created is False

    @pytest.mark.asyncio
    async def test_collision_without_winner_conflicts(self, mock_db, chat_setup):
        request, referee, _ = chat_setup
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat_by_participants = AsyncMock(return_value=None)
            mock_repo.create_chat = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception()))

            with pytest.raises(ConflictError):
                await find_or_create_chat(mock_db, **_triple(request, referee))


class TestGetChat:
    """Tests for participant checks."""

    @pytest.mark.asyncio
    async def test_participants_can_read(self, mock_db, chat_setup, verifier_user):
        _, referee, chat = chat_setup
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat = AsyncMock(return_value=chat)

            assert await get_chat(mock_db, chat.id, as_current_user(verifier_user)) is chat
            assert await get_chat(mock_db, chat.id, as_current_user(referee)) is chat

    @pytest.mark.asyncio
    async def test_student_cannot_read(self, mock_db, chat_setup, student_user):
        """The student is recorded on the chat but is not a participant."""
        _, _, chat = chat_setup
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat = AsyncMock(return_value=chat)

            with pytest.raises(ForbiddenError):
                await get_chat(mock_db, chat.id, as_current_user(student_user))

    @pytest.mark.asyncio
    async def test_unknown_chat(self, mock_db, verifier_user):
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat = AsyncMock(return_value=None)

            with pytest.raises(NotFoundError):
                await get_chat(mock_db, uuid4(), as_current_user(verifier_user))


class TestAddMessage:
    """Tests for add_message."""

    @pytest.mark.asyncio
    async def test_message_committed_then_published(self, mock_db, chat_setup):
        _, referee, chat = chat_setup
        actor = as_current_user(referee)

        async def store(db, message, now):
            message.id = uuid4()
            return message

        with (
            patch(f"{MODULE}.repository") as mock_repo,
            patch(f"{MODULE}.publish_event", AsyncMock(return_value=True)) as mock_publish,
        ):
            mock_repo.get_chat = AsyncMock(return_value=chat)
            mock_repo.add_message = AsyncMock(side_effect=store)

            message = await add_message(mock_db, chat.id, actor, "  Happy to vouch for Sam.  ")

            assert isinstance(message, BackgroundVerificationChatMessage)
            assert message.message == "Happy to vouch for Sam."
            assert message.sender_role == "VERIFIER"
            mock_db.commit.assert_awaited_once()

            channel, event, data = mock_publish.call_args.args
            assert channel == f"bg-chat:{chat.id}"
            assert event == "bg_message"
            assert data["message"]["id"] == str(message.id)

    @pytest.mark.asyncio
    async def test_blank_message_rejected(self, mock_db, chat_setup):
        _, referee, chat = chat_setup
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat = AsyncMock(return_value=chat)

            with pytest.raises(ValidationError):
                await add_message(mock_db, chat.id, as_current_user(referee), "   ")
            with pytest.raises(ValidationError):
                await add_message(
                    mock_db, chat.id, as_current_user(referee), "x" * (MAX_MESSAGE_LENGTH + 1)
                )

    @pytest.mark.asyncio
    async def test_non_participant_cannot_post(self, mock_db, chat_setup):
        _, _, chat = chat_setup
        outsider = make_user(role=UserRole.VERIFIER)
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat = AsyncMock(return_value=chat)
            mock_repo.add_message = AsyncMock()

            with pytest.raises(ForbiddenError):
                await add_message(mock_db, chat.id, as_current_user(outsider), "hello")

            mock_repo.add_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_closed_chat_rejected(self, mock_db, chat_setup, verifier_user):
        _, _, chat = chat_setup
        chat.is_active = False
        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_chat = AsyncMock(return_value=chat)

            with pytest.raises(ValidationError):
                await add_message(mock_db, chat.id, as_current_user(verifier_user), "hello")

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_message(self, mock_db, chat_setup, verifier_user):
        _, _, chat = chat_setup
        stored = MagicMock(id=uuid4(), sender_id=verifier_user.id)
        with (
            patch(f"{MODULE}.repository") as mock_repo,
            patch(f"{MODULE}.publish_event", AsyncMock(return_value=False)),
        ):
            mock_repo.get_chat = AsyncMock(return_value=chat)
            mock_repo.add_message = AsyncMock(return_value=stored)

            result = await add_message(mock_db, chat.id, as_current_user(verifier_user), "hello")

            assert result is stored
            mock_db.commit.assert_awaited_once()
