"""
Unit tests for background verification request schemas.
"""

import time

import pytest
from pydantic import ValidationError

from app.modules.background_verifications.schemas import RefereeContactInput


def _contact(email: str) -> RefereeContactInput:
    return RefereeContactInput(name="Referee", email=email, phone="+1 555 0100")


class TestRefereeContactEmail:
    """Tests for RefereeContactInput email validation."""

    @pytest.mark.parametrize(
        "email",
        [
            "ref@company.tech",
            "jane+ref@gmail.com",
            "x@uni.education",
            "first.last@sub.example.co.uk",
        ],
    )
    def test_accepts_valid_addresses(self, email):
        assert _contact(email).email == email

    def test_normalises_case_and_whitespace(self):
        assert _contact("  Boss@ACME.com ").email == "boss@acme.com"

    @pytest.mark.parametrize(
        "email",
        ["not-an-email", "missing@", "@acme.com", "two@@acme.com", "spaces in@acme.com"],
    )
    def test_rejects_malformed_addresses(self, email):
        with pytest.raises(ValidationError):
            _contact(email)

    def test_long_invalid_local_part_fails_fast(self):
        started = time.monotonic()

        with pytest.raises(ValidationError):
            _contact("a" * 60 + "!")

        assert time.monotonic() - started < 1.0
