"""
Unit tests for the verification record manager.

These tests cover:
- Reusing an active PENDING cycle
- Creating a new cycle and its CREATED log entry
- Losing an insert race to a concurrent caller
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from factories import make_verification
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictError
from app.modules.claims.models import ItemType
from app.modules.verifications.models import VerificationAction
from app.modules.verifications.service import create_or_get_pending_verification


def _integrity_error() -> IntegrityError:
    return IntegrityError("INSERT INTO verifications", {}, Exception("duplicate key"))


class TestCreateOrGetPendingVerification:
    """Tests for create_or_get_pending_verification."""

    @pytest.mark.asyncio
    async def test_returns_existing_pending(self, mock_db):
        """An active PENDING cycle is returned unchanged."""
        existing = make_verification()
        with patch("app.modules.verifications.service.repository") as mock_repo:
            mock_repo.get_active_pending = AsyncMock(return_value=existing)
            mock_repo.create = AsyncMock()

            verification, created = await create_or_get_pending_verification(
                mock_db,
                item_id=existing.item_id,
                item_type=ItemType.EDUCATION,
                verifier_email="someone-else@example.com",
            )

            assert verification is existing
            assert created is False
            mock_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_creates_new_cycle_with_log(self, mock_db):
        """A new cycle normalises the email and records who created it."""
        new = make_verification(verifier_email="prof@uni-a.edu")
        with patch("app.modules.verifications.service.repository") as mock_repo:
            mock_repo.get_active_pending = AsyncMock(return_value=None)
            mock_repo.expire_stale_pending_for_item = AsyncMock(return_value=1)
            mock_repo.create = AsyncMock(return_value=new)
            mock_repo.add_log = AsyncMock()

            verification, created = await create_or_get_pending_verification(
                mock_db,
                item_id=new.item_id,
                item_type=ItemType.EDUCATION,
                verifier_email="  Prof@Uni-A.edu ",
                actor_email="Student@Uni-B.edu",
            )

            assert created is True
            assert verification is new
            assert mock_repo.create.call_args.kwargs["verifier_email"] == "prof@uni-a.edu"
            mock_repo.expire_stale_pending_for_item.assert_awaited_once()

            log_kwargs = mock_repo.add_log.call_args.kwargs
            assert log_kwargs["action"] == VerificationAction.CREATED
            assert log_kwargs["actor_email"] == "student@uni-b.edu"

    @pytest.mark.asyncio
    async def test_log_failure_does_not_fail_creation(self, mock_db):
        """The CREATED log is best-effort."""
        new = make_verification()
        with patch("app.modules.verifications.service.repository") as mock_repo:
            mock_repo.get_active_pending = AsyncMock(return_value=None)
            mock_repo.expire_stale_pending_for_item = AsyncMock(return_value=0)
            mock_repo.create = AsyncMock(return_value=new)
            mock_repo.add_log = AsyncMock(side_effect=RuntimeError("log table down"))

            verification, created = await create_or_get_pending_verification(
                mock_db,
                item_id=new.item_id,
                item_type=ItemType.EDUCATION,
                verifier_email="prof@uni-a.edu",
                actor_email="student@uni-b.edu",
            )

            assert created is True
            assert verification is new

    @pytest.mark.asyncio
    async def test_concurrent_insert_returns_winner(self, mock_db):
        """When a concurrent caller inserted first, its row is returned."""
        winner = make_verification()
        with patch("app.modules.verifications.service.repository") as mock_repo:
            mock_repo.get_active_pending = AsyncMock(side_effect=[None, winner])
            mock_repo.expire_stale_pending_for_item = AsyncMock(return_value=0)
            mock_repo.create = AsyncMock(side_effect=_integrity_error())

            verification, created = await create_or_get_pending_verification(
                mock_db,
                item_id=winner.item_id,
                item_type=ItemType.EDUCATION,
                verifier_email="prof@uni-a.edu",
            )

            assert verification is winner
            assert created is False

    @pytest.mark.asyncio
    async def test_concurrent_insert_without_winner_conflicts(self, mock_db):
        with patch("app.modules.verifications.service.repository") as mock_repo:
            mock_repo.get_active_pending = AsyncMock(return_value=None)
            mock_repo.expire_stale_pending_for_item = AsyncMock(return_value=0)
            mock_repo.create = AsyncMock(side_effect=_integrity_error())

            with pytest.raises(ConflictError):
                await create_or_get_pending_verification(
                    mock_db,
                    item_id=uuid4(),
                    item_type=ItemType.EXPERIENCE,
                    verifier_email="prof@uni-a.edu",
                )
