"""
Verifications Schemas

Pydantic schemas for the verifier invite and decision endpoints.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from app.modules.auth.schemas import UserResponse
from app.modules.claims.models import ItemType
from app.modules.verifications.models import (
    Decision,
    InviteStatus,
    VerificationAction,
    VerificationStatus,
)

# ============================================
# Invites
# ============================================


class InviteCreateRequest(BaseModel):
    """
    Request body for POST /verifier-invites.

    Either `verification_id` or the (email, item_type, item_id) tuple must be
    supplied. With `verification_id`, `email` defaults to the verification's
    verifier email.
    """

    verification_id: UUID | None = None
    email: EmailStr | None = None
    item_type: ItemType | None = None
    item_id: UUID | None = None
    name: str | None = Field(None, max_length=200)
    organization: str | None = Field(None, max_length=200)
    message: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_target(self) -> "InviteCreateRequest":
        if self.verification_id is None and not (self.email and self.item_type and self.item_id):
            raise ValueError("Provide verification_id, or email together with item_type and item_id")
        return self


class InviteCreateResponse(BaseModel):
    invite_id: UUID
    status: InviteStatus
    expires_at: datetime
    verification_id: UUID


class InviteResendResponse(BaseModel):
    invite_id: UUID
    expires_at: datetime


class TokenRequest(BaseModel):
    """Body carrying an invite-claim or action token."""

    token: str = Field(..., min_length=1)


class OptionalTokenRequest(BaseModel):
    token: str | None = None


class InvitePreviewResponse(BaseModel):
    """Read-only summary shown before the recipient claims an invite."""

    invite_id: UUID
    email: str
    name: str | None
    organization: str | None
    message: str | None
    status: InviteStatus
    expires_at: datetime
    verification_id: UUID
    item_type: ItemType
    item_title: str | None
    student_name: str | None


class InviteClaimResponse(BaseModel):
    """
    Result of claiming an invite.

    `action_token` is always present. `token` and `user` are only set when an
    account already exists for the invited email.
    """

    has_account: bool
    action_token: str
    token: str | None = None
    user: UserResponse | None = None
    verification_id: UUID


class CreateAccountRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=128)
    name: str | None = Field(None, max_length=200)


class OkResponse(BaseModel):
    ok: bool = True


# ============================================
# Decisions
# ============================================


class DecisionRequest(BaseModel):
    """Body for POST /verifications/{id}/decision. `token` or a verifier session is required."""

    decision: Decision
    comment: str | None = Field(None, max_length=2000)
    token: str | None = None


class DecisionResponse(BaseModel):
    ok: bool = True
    verification_id: UUID
    status: VerificationStatus


class VerificationLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: VerificationAction
    actor_email: str | None
    meta: dict[str, Any] | None
    created_at: datetime


class StudentSummary(BaseModel):
    id: UUID
    name: str
    email: str
    institute: str | None


class VerificationDetailsResponse(BaseModel):
    """Everything an action-token holder needs to decide on a claim."""

    verification_id: UUID
    status: VerificationStatus
    item_type: ItemType
    item_id: UUID
    item_title: str | None
    item: dict[str, Any] | None
    verifier_email: str
    verifier_name: str | None
    verifier_organization: str | None
    expires_at: datetime
    student: StudentSummary | None
    logs: list[VerificationLogResponse]
