"""
Unit tests for the verification token issuer.
"""

from uuid import uuid4

import jwt
import pytest

from app.core.config import settings
from app.core.exceptions import TokenExpiredError, TokenInvalidError, TokenRevokedError
from app.modules.verifications import tokens


class TestIssueTokens:
    """Tests for invite-claim and action token minting."""

    def test_invite_claim_token_carries_binding(self):
        """Claims hold the invite id, purpose, lowercase email and a jti."""
        invite_id = uuid4()
        issued = tokens.issue_invite_claim_token(invite_id, "Prof@Uni-A.edu")

        claims = tokens.decode_invite_token(issued.token, {tokens.PURPOSE_INVITE_CLAIM})

        assert claims["sub"] == str(invite_id)
        assert claims["purpose"] == tokens.PURPOSE_INVITE_CLAIM
        assert claims["email"] == "prof@uni-a.edu"
        assert claims["jti"] == issued.jti

    def test_each_token_has_fresh_jti(self):
        """Re-issuing for the same invite yields a different jti."""
        invite_id = uuid4()
        first = tokens.issue_invite_claim_token(invite_id, "a@b.com")
        second = tokens.issue_invite_claim_token(invite_id, "a@b.com")

        assert first.jti != second.jti

    def test_action_token_is_short_lived(self):
        """Action tokens expire well before invite-claim tokens."""
        invite_id = uuid4()
        claim = tokens.issue_invite_claim_token(invite_id, "a@b.com")
        action = tokens.issue_action_token(invite_id, "a@b.com")

        assert action.expires_at < claim.expires_at


class TestDecodeInviteToken:
    """Tests for token verification."""

    def test_expired_token_raises_expired(self):
        """A token past its exp is TOKEN_EXPIRED, not invalid."""
        issued = tokens.issue_invite_claim_token(uuid4(), "a@b.com", ttl_seconds=-10)

        with pytest.raises(TokenExpiredError) as exc_info:
            tokens.decode_invite_token(issued.token, {tokens.PURPOSE_INVITE_CLAIM})

        assert exc_info.value.status_code == 410

    def test_wrong_purpose_rejected(self):
        """An invite-claim token cannot be used where an action token is required."""
        issued = tokens.issue_invite_claim_token(uuid4(), "a@b.com")

        with pytest.raises(TokenInvalidError):
            tokens.decode_invite_token(issued.token, {tokens.PURPOSE_VERIFICATION_ACTION})

    def test_bad_signature_rejected(self):
        """Tokens signed with another key are invalid."""
        forged = jwt.encode(
            {"sub": str(uuid4()), "purpose": tokens.PURPOSE_INVITE_CLAIM, "jti": "x", "email": "a@b.com", "exp": 9999999999},
            "not-the-secret",
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(TokenInvalidError):
            tokens.decode_invite_token(forged, {tokens.PURPOSE_INVITE_CLAIM})

    def test_garbage_and_empty_rejected(self):
        """Malformed input is invalid."""
        with pytest.raises(TokenInvalidError):
            tokens.decode_invite_token("not.a.token", {tokens.PURPOSE_INVITE_CLAIM})
        with pytest.raises(TokenInvalidError):
            tokens.decode_invite_token("", {tokens.PURPOSE_INVITE_CLAIM})

    def test_missing_email_rejected(self):
        """A correctly signed token without the email binding is invalid."""
        unbound = jwt.encode(
            {"sub": str(uuid4()), "purpose": tokens.PURPOSE_INVITE_CLAIM, "jti": "x", "exp": 9999999999},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(TokenInvalidError):
            tokens.decode_invite_token(unbound, {tokens.PURPOSE_INVITE_CLAIM})


class TestTokenChecks:
    """Tests for subject and jti checks."""

    def test_subject_mismatch_is_invalid(self):
        issued = tokens.issue_invite_claim_token(uuid4(), "a@b.com")
        claims = tokens.decode_invite_token(issued.token, {tokens.PURPOSE_INVITE_CLAIM})

        with pytest.raises(TokenInvalidError):
            tokens.ensure_subject(claims, uuid4())

    def test_superseded_token_is_revoked(self):
        """Once a newer jti is stored, the older token is revoked."""
        invite_id = uuid4()
        old = tokens.issue_invite_claim_token(invite_id, "a@b.com")
        new = tokens.issue_invite_claim_token(invite_id, "a@b.com")
        old_claims = tokens.decode_invite_token(old.token, {tokens.PURPOSE_INVITE_CLAIM})
        new_claims = tokens.decode_invite_token(new.token, {tokens.PURPOSE_INVITE_CLAIM})

        tokens.ensure_current_jti(new_claims, new.jti)
        with pytest.raises(TokenRevokedError):
            tokens.ensure_current_jti(old_claims, new.jti)

    def test_no_stored_jti_is_revoked(self):
        issued = tokens.issue_action_token(uuid4(), "a@b.com")
        claims = tokens.decode_invite_token(issued.token, {tokens.PURPOSE_VERIFICATION_ACTION})

        with pytest.raises(TokenRevokedError):
            tokens.ensure_current_jti(claims, None)
