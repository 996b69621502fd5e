"""
Unit tests for creating and editing claim items.

These tests cover:
- Adding an item with and without a platform verifier
- Skipping the verification when the verifier is unknown or at another institute
- Reusing a cycle already pending with another verifier
- Ownership, verified-item and date checks on edit
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from factories import as_current_user, make_user, make_verification

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.modules.claims import service
from app.modules.claims.models import Education, Experience, ItemType
from app.modules.claims.schemas import (
    EducationCreateRequest,
    EducationUpdateRequest,
    ExperienceCreateRequest,
)
from app.modules.notifications.models import NotificationKind
from app.modules.users.models import UserRole

MODULE = "app.modules.claims.service"


@pytest.fixture
def notifications_mock():
    with patch(f"{MODULE}.notifications") as mock_notifications:
        mock_notifications.enqueue = AsyncMock(return_value=MagicMock())
        mock_notifications.dispatch_after_commit = AsyncMock()
        yield mock_notifications


@pytest.fixture
def head_of_department():
    return make_user(
        role=UserRole.VERIFIER, email="hod@uni-b.edu", name="Dr. Hod", institute="Uni B"
    )


def _education(owner_id, *, verified: bool = False) -> Education:
    return Education(
        id=uuid4(),
        user_id=owner_id,
        institution="Uni B",
        degree="BSc Computer Science",
        start_date=date(2020, 9, 1),
        end_date=date(2024, 6, 30),
        verified=verified,
    )


def _education_request(**overrides) -> EducationCreateRequest:
    fields = {"institution": " Uni B ", "degree": "BSc Computer Science"}
    fields.update(overrides)
    return EducationCreateRequest(**fields)


class TestCreateItem:
    """Tests for create_item."""

    @pytest.mark.asyncio
    async def test_platform_verifier_gets_review_request(
        self, mock_db, student_user, head_of_department, notifications_mock
    ):
        """Adding an item with a verifier at the same institute starts a verification."""
        verification = make_verification(verifier_email="hod@uni-b.edu")

        with (
            patch(f"{MODULE}.UserRepository") as mock_users,
            patch(
                f"{MODULE}.create_or_get_pending_verification",
                AsyncMock(return_value=(verification, True)),
            ) as mock_create_verification,
        ):
            mock_users.get_by_email = AsyncMock(return_value=head_of_department)
            mock_users.get_by_id = AsyncMock(return_value=student_user)

            response = await service.create_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                _education_request(verifier_email="HOD@uni-b.edu"),
            )

            item = mock_db.add.call_args.args[0]
            assert isinstance(item, Education)
            assert item.user_id == student_user.id
            assert item.institution == "Uni B"
            assert response.id == item.id
            assert response.title == "BSc Computer Science - Uni B"

            kwargs = mock_create_verification.call_args.kwargs
            assert kwargs["item_id"] == item.id
            assert kwargs["item_type"] == ItemType.EDUCATION
            assert kwargs["verifier_email"] == "hod@uni-b.edu"
            assert kwargs["actor_email"] == "student@uni-b.edu"

            assert response.verification.id == verification.id
            assert response.verification.created is True
            assert response.verification_note is None

            kind, payload = notifications_mock.enqueue.call_args.args[1:]
            assert kind == NotificationKind.VERIFICATION_REQUEST
            assert payload["to_email"] == "hod@uni-b.edu"
            assert payload["student_name"] == "Sam Student"
            assert payload["review_url"].endswith(f"/verifications/{verification.id}")
            mock_db.commit.assert_awaited_once()
            notifications_mock.dispatch_after_commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_verifier(self, mock_db, student_user, notifications_mock):
        with patch(f"{MODULE}.create_or_get_pending_verification", AsyncMock()) as mock_create:
            response = await service.create_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EXPERIENCE,
                ExperienceCreateRequest(organization="Acme", role="Intern"),
            )

            assert isinstance(mock_db.add.call_args.args[0], Experience)
            assert response.title == "Intern at Acme"
            assert response.verified is False
            assert response.verification is None
            mock_create.assert_not_called()
            notifications_mock.enqueue.assert_not_called()
            notifications_mock.dispatch_after_commit.assert_not_called()
            mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_flag_without_email_explains(self, mock_db, student_user, notifications_mock):
        response = await service.create_item(
            mock_db,
            as_current_user(student_user),
            ItemType.EDUCATION,
            _education_request(request_verification=True),
        )

        assert response.verification is None
        assert "verifier_email" in response.verification_note

    @pytest.mark.asyncio
    async def test_unknown_verifier_saves_item_only(self, mock_db, student_user, notifications_mock):
        """An email with no VERIFIER account is pointed at the invite flow."""
        with (
            patch(f"{MODULE}.UserRepository") as mock_users,
            patch(f"{MODULE}.create_or_get_pending_verification", AsyncMock()) as mock_create,
        ):
            mock_users.get_by_email = AsyncMock(return_value=None)

            response = await service.create_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                _education_request(verifier_email="prof@elsewhere.edu"),
            )

            assert response.verification is None
            assert "invite" in response.verification_note
            mock_create.assert_not_called()
            notifications_mock.enqueue.assert_not_called()
            mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_student_email_is_not_a_verifier(self, mock_db, student_user, notifications_mock):
        classmate = make_user(role=UserRole.STUDENT, email="mate@uni-b.edu", institute="Uni B")
        with (
            patch(f"{MODULE}.UserRepository") as mock_users,
            patch(f"{MODULE}.create_or_get_pending_verification", AsyncMock()) as mock_create,
        ):
            mock_users.get_by_email = AsyncMock(return_value=classmate)

            response = await service.create_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                _education_request(verifier_email="mate@uni-b.edu"),
            )

            assert response.verification is None
            mock_create.assert_not_called()

    @pytest.mark.asyncio
    async def test_verifier_at_other_institute_skipped(
        self, mock_db, student_user, verifier_user, notifications_mock
    ):
        with (
            patch(f"{MODULE}.UserRepository") as mock_users,
            patch(f"{MODULE}.create_or_get_pending_verification", AsyncMock()) as mock_create,
        ):
            mock_users.get_by_email = AsyncMock(return_value=verifier_user)
            mock_users.get_by_id = AsyncMock(return_value=student_user)

            response = await service.create_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                _education_request(verifier_email="vera@uni-a.edu"),
            )

            assert response.verification is None
            assert "institute" in response.verification_note
            mock_create.assert_not_called()

    @pytest.mark.asyncio
    async def test_record_manager_conflict_keeps_item(
        self, mock_db, student_user, head_of_department, notifications_mock
    ):
        with (
            patch(f"{MODULE}.UserRepository") as mock_users,
            patch(
                f"{MODULE}.create_or_get_pending_verification",
                AsyncMock(side_effect=ConflictError("Please try again.")),
            ),
        ):
            mock_users.get_by_email = AsyncMock(return_value=head_of_department)
            mock_users.get_by_id = AsyncMock(return_value=student_user)

            response = await service.create_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                _education_request(verifier_email="hod@uni-b.edu"),
            )

            assert response.verification is None
            assert response.verification_note == "Please try again."
            mock_db.commit.assert_awaited_once()


class TestUpdateItem:
    """Tests for update_item."""

    @pytest.mark.asyncio
    async def test_updates_fields_and_reuses_pending_cycle(
        self, mock_db, student_user, head_of_department, notifications_mock
    ):
        """An item already pending with another verifier keeps that cycle and sends no email."""
        item = _education(student_user.id)
        mock_db.get = AsyncMock(return_value=item)
        pending = make_verification(verifier_email="other@uni-b.edu", item_id=item.id)

        with (
            patch(f"{MODULE}.UserRepository") as mock_users,
            patch(
                f"{MODULE}.create_or_get_pending_verification",
                AsyncMock(return_value=(pending, False)),
            ),
        ):
            mock_users.get_by_email = AsyncMock(return_value=head_of_department)
            mock_users.get_by_id = AsyncMock(return_value=student_user)

            response = await service.update_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                item.id,
                EducationUpdateRequest(degree="MSc Computer Science", verifier_email="hod@uni-b.edu"),
            )

            assert item.degree == "MSc Computer Science"
            assert item.institution == "Uni B"
            assert response.verification.id == pending.id
            assert response.verification.created is False
            assert "another verifier" in response.verification_note
            notifications_mock.enqueue.assert_not_called()
            mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_item(self, mock_db, student_user):
        mock_db.get = AsyncMock(return_value=None)

        with pytest.raises(NotFoundError):
            await service.update_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                uuid4(),
                EducationUpdateRequest(degree="MSc"),
            )

    @pytest.mark.asyncio
    async def test_other_students_item_forbidden(self, mock_db, student_user):
        item = _education(uuid4())
        mock_db.get = AsyncMock(return_value=item)

        with pytest.raises(ForbiddenError):
            await service.update_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                item.id,
                EducationUpdateRequest(degree="MSc"),
            )

        assert item.degree == "BSc Computer Science"
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_verified_item_is_read_only(self, mock_db, student_user):
        item = _education(student_user.id, verified=True)
        mock_db.get = AsyncMock(return_value=item)

        with pytest.raises(ConflictError):
            await service.update_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                item.id,
                EducationUpdateRequest(degree="MSc"),
            )

        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_end_before_start_rejected(self, mock_db, student_user):
        item = _education(student_user.id)
        mock_db.get = AsyncMock(return_value=item)

        with pytest.raises(ValidationError):
            await service.update_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                item.id,
                EducationUpdateRequest(end_date=date(2019, 1, 1)),
            )

        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_required_field_cannot_be_cleared(self, mock_db, student_user):
        item = _education(student_user.id)
        mock_db.get = AsyncMock(return_value=item)

        with pytest.raises(ValidationError):
            await service.update_item(
                mock_db,
                as_current_user(student_user),
                ItemType.EDUCATION,
                item.id,
                EducationUpdateRequest(degree=None),
            )


class TestClaimSchemas:
    def test_create_rejects_end_before_start(self):
        with pytest.raises(ValueError):
            _education_request(start_date=date(2024, 1, 1), end_date=date(2023, 1, 1))

    def test_verifier_email_normalised(self):
        assert _education_request(verifier_email="HOD@Uni-B.edu").verifier_email == "hod@uni-b.edu"
