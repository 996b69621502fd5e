"""
Unit tests for the service error taxonomy.
"""

import pytest

from app.core.exceptions import (
    AlreadyProcessedError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TokenExpiredError,
    TokenInvalidError,
    TokenRevokedError,
    ValidationError,
    internal_http_exception,
    to_http_exception,
)


class TestToHttpException:
    """Tests for converting service errors to HTTP responses."""

    @pytest.mark.parametrize(
        ("error", "status_code", "code"),
        [
            (ValidationError("bad"), 400, "VALIDATION_ERROR"),
            (NotFoundError("Invite"), 404, "NOT_FOUND"),
            (ForbiddenError(), 403, "FORBIDDEN"),
            (ConflictError("dup"), 409, "CONFLICT"),
            (TokenInvalidError(), 400, "TOKEN_INVALID"),
            (TokenExpiredError(), 410, "TOKEN_EXPIRED"),
            (TokenRevokedError(), 410, "TOKEN_REVOKED"),
            (AlreadyProcessedError(), 410, "ALREADY_PROCESSED"),
        ],
    )
    def test_status_and_body(self, error, status_code, code):
        http_error = to_http_exception(error)

        assert http_error.status_code == status_code
        assert http_error.detail["error"] == code
        assert http_error.detail["message"] == error.message

    def test_not_found_message_includes_id(self):
        assert NotFoundError("Invite", "abc").message == "Invite abc not found"

    def test_internal_error_hides_details(self):
        http_error = internal_http_exception()

        assert http_error.status_code == 500
        assert http_error.detail["error"] == "INTERNAL_ERROR"
