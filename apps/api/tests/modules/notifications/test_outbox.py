"""
Unit tests for the notification outbox.

These tests cover:
- Delivery state transitions (sent, retried, given up)
- Batch dispatch counting
- Post-commit dispatch never failing the caller
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from app.modules.notifications import jobs, repository
from app.modules.notifications import service as notifications
from app.modules.notifications.models import NotificationKind, OutboxMessage, OutboxStatus

MODULE = "app.modules.notifications.service"


def _message(attempts: int = 0) -> OutboxMessage:
    return OutboxMessage(
        id=uuid4(),
        kind=NotificationKind.VERIFIER_INVITE,
        payload={"to_email": "prof@uni-a.edu", "invite_url": "http://localhost/x"},
        status=OutboxStatus.PENDING,
        attempts=attempts,
    )


class TestHandlerFor:
    def test_every_kind_has_a_sender(self):
        for kind in NotificationKind:
            assert callable(notifications._handler_for(kind))


class TestDeliver:
    """Tests for deliver."""

    @pytest.mark.asyncio
    async def test_success_marks_sent(self):
        message = _message()
        sender = AsyncMock(return_value=True)

        with patch(f"{MODULE}._handler_for", return_value=sender):
            sent = await notifications.deliver(message, max_attempts=5)

        assert sent is True
        assert message.status == OutboxStatus.SENT
        assert message.attempts == 1
        assert message.processed_at is not None
        sender.assert_awaited_once_with(to_email="prof@uni-a.edu", invite_url="http://localhost/x")

    @pytest.mark.asyncio
    async def test_transport_failure_stays_pending(self):
        message = _message()

        with patch(f"{MODULE}._handler_for", return_value=AsyncMock(return_value=False)):
            sent = await notifications.deliver(message, max_attempts=5)

        assert sent is False
        assert message.status == OutboxStatus.PENDING
        assert message.attempts == 1
        assert message.last_error == "Email transport reported failure"

    @pytest.mark.asyncio
    async def test_last_attempt_marks_failed(self):
        """The final failed attempt gives up on the message."""
        message = _message(attempts=4)
        sender = AsyncMock(side_effect=RuntimeError("smtp refused"))

        with patch(f"{MODULE}._handler_for", return_value=sender):
            sent = await notifications.deliver(message, max_attempts=5)

        assert sent is False
        assert message.status == OutboxStatus.FAILED
        assert message.last_error == "smtp refused"
        assert message.processed_at is not None


class TestDispatch:
    """Tests for dispatch and dispatch_after_commit."""

    @pytest.mark.asyncio
    async def test_dispatch_counts_results(self, mock_db):
        messages = [_message(), _message()]
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=mock_db)
        session_cm.__aexit__ = AsyncMock(return_value=False)

        with (
            patch(f"{MODULE}.async_session_maker", return_value=session_cm),
            patch(f"{MODULE}.repository") as mock_repo,
            patch(f"{MODULE}.deliver", AsyncMock(side_effect=[True, False])),
        ):
            mock_repo.get_pending = AsyncMock(return_value=messages)

            results = await notifications.dispatch([m.id for m in messages])

        assert results == {"processed": 2, "sent": 1, "failed": 1}
        assert mock_repo.get_pending.call_args.kwargs["ids"] == [m.id for m in messages]
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_after_commit_swallows_errors(self):
        with patch(f"{MODULE}.dispatch", AsyncMock(side_effect=ConnectionError("db gone"))):
            await notifications.dispatch_after_commit([_message()])

    @pytest.mark.asyncio
    async def test_after_commit_skips_empty(self):
        with patch(f"{MODULE}.dispatch", AsyncMock()) as mock_dispatch:
            await notifications.dispatch_after_commit([])

        mock_dispatch.assert_not_called()


class TestPurgeProcessed:
    """Tests for purging processed outbox rows."""

    @pytest.mark.asyncio
    async def test_failed_rows_are_purged_with_sent(self, mock_db):
        """Given-up messages still hold link tokens, so they are deleted too."""
        mock_db.execute = AsyncMock(return_value=MagicMock(rowcount=3))
        cutoff = datetime.now(UTC) - timedelta(days=7)

        deleted = await repository.purge_processed_before(mock_db, cutoff)

        assert deleted == 3
        params = mock_db.execute.call_args.args[0].compile().params
        statuses = next(v for v in params.values() if isinstance(v, (list, tuple)))
        assert set(statuses) == {OutboxStatus.SENT, OutboxStatus.FAILED}
        assert cutoff in params.values()

    @pytest.mark.asyncio
    async def test_purge_job_commits(self, mock_db):
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=mock_db)
        session_cm.__aexit__ = AsyncMock(return_value=False)

        with (
            patch("app.modules.notifications.jobs.async_session_maker", return_value=session_cm),
            patch("app.modules.notifications.jobs.repository") as mock_repo,
        ):
            mock_repo.purge_processed_before = AsyncMock(return_value=2)

            result = await jobs.purge_processed_notifications()

        assert result == {"deleted": 2}
        mock_db.commit.assert_awaited_once()
