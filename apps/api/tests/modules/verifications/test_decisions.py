"""
Unit tests for the decision processor.

These tests cover:
- Approve and deny through an action token
- Designated-verifier and terminal-state guards
- Losing a concurrent decision
- Item and email failures not undoing a committed decision
- Action token actor resolution
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from factories import as_current_user, make_invite, make_user, make_verification

from app.core.exceptions import (
    AlreadyProcessedError,
    ForbiddenError,
    TokenExpiredError,
    TokenRevokedError,
)
from app.modules.users.models import UserRole
from app.modules.verifications import tokens
from app.modules.verifications.decisions import (
    DECISION_TRANSITIONS,
    DecisionActor,
    actor_from_session,
    process_decision,
    resolve_actor_from_action_token,
)
from app.modules.verifications.models import (
    Decision,
    InviteStatus,
    VerificationAction,
    VerificationStatus,
)

MODULE = "app.modules.verifications.decisions"


def _variant(owner_id=None, mark_result=True):
    variant = MagicMock()
    variant.mark_verified = AsyncMock(return_value=mark_result)
    variant.mark_rejected = AsyncMock(return_value=mark_result)
    item = MagicMock()
    item.user_id = owner_id or uuid4()
    variant.load = AsyncMock(return_value=item)
    variant.title = MagicMock(return_value="BSc Computer Science - Uni B")
    return variant


@pytest.fixture
def notifications_mock():
    with patch(f"{MODULE}.notifications") as mock_notifications:
        mock_notifications.enqueue = AsyncMock(return_value=MagicMock())
        mock_notifications.dispatch_after_commit = AsyncMock()
        yield mock_notifications


class TestDecisionTransitions:
    def test_transition_table(self):
        assert DECISION_TRANSITIONS[Decision.APPROVE] == (
            VerificationStatus.APPROVED,
            VerificationAction.APPROVED,
        )
        assert DECISION_TRANSITIONS[Decision.DENY] == (
            VerificationStatus.REJECTED,
            VerificationAction.REJECTED,
        )


class TestProcessDecision:
    """Tests for process_decision."""

    @pytest.mark.asyncio
    async def test_approve_marks_item_and_emails_owner(self, mock_db, student_user, notifications_mock):
        """Professor approves: status, log, item and owner email all follow."""
        verification = make_verification()
        invite = make_invite(verification, status=InviteStatus.ACCEPTED)
        actor = DecisionActor(email="prof@uni-a.edu", invite=invite)
        variant = _variant(owner_id=student_user.id)

        with (
            patch(f"{MODULE}.repository") as mock_repo,
            patch(f"{MODULE}.get_verifiable_item", return_value=variant),
            patch(f"{MODULE}.UserRepository") as mock_users,
        ):
            mock_repo.get_by_id = AsyncMock(return_value=verification)
            mock_repo.apply_decision = AsyncMock(return_value=True)
            mock_repo.add_log = AsyncMock()
            mock_users.get_by_id = AsyncMock(return_value=student_user)

            response = await process_decision(
                mock_db, verification.id, Decision.APPROVE, "  Confirmed enrolment ", actor
            )

            assert response.status == VerificationStatus.APPROVED
            apply_kwargs = mock_repo.apply_decision.call_args.kwargs
            assert apply_kwargs["status"] == VerificationStatus.APPROVED
            assert apply_kwargs["decided_by"] == "prof@uni-a.edu"
            assert apply_kwargs["comment"] == "Confirmed enrolment"
            assert mock_repo.add_log.call_args.kwargs["action"] == VerificationAction.APPROVED

            variant.mark_verified.assert_awaited_once()
            outcome = variant.mark_verified.call_args.args[2]
            assert outcome.verifier_name == "Prof. Ada"
            variant.mark_rejected.assert_not_called()

            payload = notifications_mock.enqueue.call_args.args[2]
            assert payload["to_email"] == "student@uni-b.edu"
            assert payload["status"] == "APPROVED"
            notifications_mock.dispatch_after_commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_deny_marks_item_rejected(self, mock_db, notifications_mock):
        verification = make_verification()
        variant = _variant()

        with (
            patch(f"{MODULE}.repository") as mock_repo,
            patch(f"{MODULE}.get_verifiable_item", return_value=variant),
            patch(f"{MODULE}.UserRepository") as mock_users,
        ):
            mock_repo.get_by_id = AsyncMock(return_value=verification)
            mock_repo.apply_decision = AsyncMock(return_value=True)
            mock_repo.add_log = AsyncMock()
            mock_users.get_by_id = AsyncMock(return_value=None)

            response = await process_decision(
                mock_db, verification.id, Decision.DENY, None, DecisionActor(email="prof@uni-a.edu")
            )

            assert response.status == VerificationStatus.REJECTED
            variant.mark_rejected.assert_awaited_once()
            notifications_mock.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_designated_verifier_forbidden(self, mock_db):
        verification = make_verification()

        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_by_id = AsyncMock(return_value=verification)
            mock_repo.apply_decision = AsyncMock()

            with pytest.raises(ForbiddenError):
                await process_decision(
                    mock_db,
                    verification.id,
                    Decision.APPROVE,
                    None,
                    DecisionActor(email="someone@else.org"),
                )

            mock_repo.apply_decision.assert_not_called()

    @pytest.mark.asyncio
    async def test_token_for_other_verification_forbidden(self, mock_db):
        verification = make_verification()
        invite = make_invite(make_verification(), status=InviteStatus.ACCEPTED)

        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_by_id = AsyncMock(return_value=verification)

            with pytest.raises(ForbiddenError):
                await process_decision(
                    mock_db,
                    verification.id,
                    Decision.APPROVE,
                    None,
                    DecisionActor(email="prof@uni-a.edu", invite=invite),
                )

    @pytest.mark.asyncio
    async def test_decided_verification_already_processed(self, mock_db):
        verification = make_verification(status=VerificationStatus.REJECTED)

        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_by_id = AsyncMock(return_value=verification)

            with pytest.raises(AlreadyProcessedError):
                await process_decision(
                    mock_db,
                    verification.id,
                    Decision.APPROVE,
                    None,
                    DecisionActor(email="prof@uni-a.edu"),
                )

    @pytest.mark.asyncio
    async def test_lost_race_already_processed(self, mock_db):
        """A concurrent decision that committed first wins."""
        verification = make_verification()

        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_by_id = AsyncMock(return_value=verification)
            mock_repo.apply_decision = AsyncMock(return_value=False)
            mock_repo.add_log = AsyncMock()

            with pytest.raises(AlreadyProcessedError):
                await process_decision(
                    mock_db,
                    verification.id,
                    Decision.DENY,
                    None,
                    DecisionActor(email="prof@uni-a.edu"),
                )

            mock_db.rollback.assert_awaited_once()
            mock_repo.add_log.assert_not_called()

    @pytest.mark.asyncio
    async def test_item_failure_keeps_decision(self, mock_db, notifications_mock):
        """The decision stays committed when marking the item fails."""
        verification = make_verification()
        variant = _variant()
        variant.mark_verified = AsyncMock(side_effect=RuntimeError("items table locked"))

        with (
            patch(f"{MODULE}.repository") as mock_repo,
            patch(f"{MODULE}.get_verifiable_item", return_value=variant),
            patch(f"{MODULE}.UserRepository") as mock_users,
        ):
            mock_repo.get_by_id = AsyncMock(return_value=verification)
            mock_repo.apply_decision = AsyncMock(return_value=True)
            mock_repo.add_log = AsyncMock()
            mock_users.get_by_id = AsyncMock(return_value=make_user())

            response = await process_decision(
                mock_db,
                verification.id,
                Decision.APPROVE,
                None,
                DecisionActor(email="prof@uni-a.edu"),
            )

            assert response.ok is True
            assert response.status == VerificationStatus.APPROVED
            mock_db.rollback.assert_awaited()
            notifications_mock.enqueue.assert_awaited_once()


class TestResolveActorFromActionToken:
    """Tests for resolve_actor_from_action_token."""

    @pytest.mark.asyncio
    async def test_valid_action_token(self, mock_db):
        invite = make_invite(make_verification(), status=InviteStatus.ACCEPTED)
        action = tokens.issue_action_token(invite.id, invite.email_lower)
        invite.action_token_jti = action.jti
        invite.action_token_expires_at = action.expires_at

        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_invite = AsyncMock(return_value=invite)

            actor = await resolve_actor_from_action_token(mock_db, action.token)

            assert actor.email == "prof@uni-a.edu"
            assert actor.invite is invite

    @pytest.mark.asyncio
    async def test_superseded_action_token_revoked(self, mock_db):
        invite = make_invite(make_verification(), status=InviteStatus.ACCEPTED)
        action = tokens.issue_action_token(invite.id, invite.email_lower)
        invite.action_token_jti = "a-newer-jti"

        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_invite = AsyncMock(return_value=invite)

            with pytest.raises(TokenRevokedError):
                await resolve_actor_from_action_token(mock_db, action.token)

    @pytest.mark.asyncio
    async def test_stored_expiry_enforced(self, mock_db):
        invite = make_invite(make_verification(), status=InviteStatus.ACCEPTED)
        action = tokens.issue_action_token(invite.id, invite.email_lower)
        invite.action_token_jti = action.jti
        invite.action_token_expires_at = datetime.now(UTC) - timedelta(minutes=1)

        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_invite = AsyncMock(return_value=invite)

            with pytest.raises(TokenExpiredError):
                await resolve_actor_from_action_token(mock_db, action.token)

    @pytest.mark.asyncio
    async def test_revoked_invite_forbidden(self, mock_db):
        """A reported invite no longer grants decisions."""
        invite = make_invite(make_verification(), status=InviteStatus.REVOKED)
        action = tokens.issue_action_token(invite.id, invite.email_lower)
        invite.action_token_jti = action.jti

        with patch(f"{MODULE}.repository") as mock_repo:
            mock_repo.get_invite = AsyncMock(return_value=invite)

            with pytest.raises(ForbiddenError):
                await resolve_actor_from_action_token(mock_db, action.token)


class TestActorFromSession:
    def test_verifier_session(self, verifier_user):
        actor = actor_from_session(as_current_user(verifier_user))

        assert actor.email == "vera@uni-a.edu"
        assert actor.user_id == verifier_user.id
        assert actor.invite is None

    def test_student_session_forbidden(self):
        student = make_user(role=UserRole.STUDENT)

        with pytest.raises(ForbiddenError):
            actor_from_session(as_current_user(student))
