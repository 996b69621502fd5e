"""
Unit tests for verifiable item dispatch.
"""

from datetime import UTC, date, datetime
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from app.core.exceptions import ValidationError
from app.modules.claims.items import (
    EducationItem,
    ExperienceItem,
    VerifiableItem,
    VerificationOutcome,
    get_verifiable_item,
)
from app.modules.claims.models import Education, Experience, ItemType


class TestGetVerifiableItem:
    """Tests for resolving item variants."""

    def test_education_and_experience_resolve(self):
        assert isinstance(get_verifiable_item(ItemType.EDUCATION), EducationItem)
        assert isinstance(get_verifiable_item(ItemType.EXPERIENCE), ExperienceItem)

    def test_github_project_not_supported(self):
        """GitHub projects are not verified through invites."""
        with pytest.raises(ValidationError) as exc_info:
            get_verifiable_item(ItemType.GITHUB_PROJECT)

        assert exc_info.value.error_code == "VALIDATION_ERROR"

    def test_variant_must_describe_items(self):
        """A variant without title and details cannot be instantiated."""

        class IncompleteItem(VerifiableItem):
            item_type = ItemType.EDUCATION
            model = Education

        with pytest.raises(TypeError):
            IncompleteItem()


class TestDescribeItems:
    """Tests for titles and detail payloads."""

    def test_education_title_and_details(self):
        item = Education(
            degree="BSc Computer Science",
            institution="Uni B",
            field_of_study="CS",
            start_date=date(2020, 9, 1),
            end_date=None,
        )
        variant = get_verifiable_item(ItemType.EDUCATION)

        assert variant.title(item) == "BSc Computer Science - Uni B"
        details = variant.details(item)
        assert details["start_date"] == "2020-09-01"
        assert details["end_date"] is None

    def test_experience_title(self):
        item = Experience(role="Intern", organization="Acme")

        assert get_verifiable_item(ItemType.EXPERIENCE).title(item) == "Intern at Acme"


class TestMarkItem:
    """Tests for writing verification results onto items."""

    @pytest.mark.asyncio
    async def test_mark_verified_reports_updated_row(self, mock_db):
        mock_db.execute.return_value = MagicMock(rowcount=1)
        outcome = VerificationOutcome(
            actor_email="prof@uni-a.edu",
            decided_at=datetime.now(UTC),
            comment="Confirmed",
            verifier_name="Prof. Ada",
        )

        updated = await get_verifiable_item(ItemType.EDUCATION).mark_verified(mock_db, uuid4(), outcome)

        assert updated is True
        mock_db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mark_rejected_missing_item(self, mock_db):
        """No matching row means nothing was updated."""
        mock_db.execute.return_value = MagicMock(rowcount=0)
        outcome = VerificationOutcome(actor_email="prof@uni-a.edu", decided_at=datetime.now(UTC))

        updated = await get_verifiable_item(ItemType.EXPERIENCE).mark_rejected(mock_db, uuid4(), outcome)

        assert updated is False
