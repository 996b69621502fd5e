"""
Background Verification Schemas

Pydantic schemas for background checks, referee submission and chats.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.modules.background_verifications.models import (
    MAX_MESSAGE_LENGTH,
    MAX_REFEREES,
    BackgroundVerificationStatus,
)

# ============================================
# Student search
# ============================================


class StudentSearchResult(BaseModel):
    id: UUID
    name: str
    email: str
    institute: str | None = None
    has_active_request: bool = False


class StudentSearchResponse(BaseModel):
    students: list[StudentSearchResult]
    total: int
    page: int
    limit: int
    total_pages: int


# ============================================
# Requests
# ============================================


class BackgroundVerificationCreateRequest(BaseModel):
    """Request body for POST /bg-verifications/request."""

    student_id: UUID
    referee_contacts_requested: int = Field(3, ge=1, le=MAX_REFEREES)
    notes: str | None = Field(None, max_length=2000)


class RefereeContactInput(BaseModel):
    """One referee as submitted by the student."""

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=50)
    role: str | None = Field(None, max_length=100)

    @field_validator("name", "phone")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="after")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class SubmitReferencesRequest(BaseModel):
    """Request body for POST /bg-verifications/{id}/submit-references."""

    referee_contacts: list[RefereeContactInput] = Field(..., min_length=1, max_length=MAX_REFEREES)


class RefereeContactResponse(BaseModel):
    name: str
    email: str
    phone: str
    role: str | None = None
    submitted_at: datetime | None = None
    user_id: UUID | None = None
    # Enriched for the requesting verifier
    user_role: str | None = None
    is_external: bool | None = None


class BackgroundVerificationResponse(BaseModel):
    """A background check as seen by its student or verifier."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    student_name: str
    student_email: str
    student_institute: str | None = None
    verifier_id: UUID
    verifier_name: str
    verifier_email: str
    verifier_institute: str
    referee_contacts_requested: int
    referee_contacts: list[RefereeContactResponse] = []
    notes: str | None = None
    status: BackgroundVerificationStatus
    completed: bool
    completed_at: datetime | None = None
    requested_at: datetime
    submitted_at: datetime | None = None
    expires_at: datetime


class BackgroundVerificationListResponse(BaseModel):
    requests: list[BackgroundVerificationResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class SubmitReferencesResponse(BaseModel):
    request: BackgroundVerificationResponse
    chat_ids: list[UUID]


class SharedRequestResponse(BaseModel):
    """A background check in which the caller was listed as a referee."""

    id: UUID
    student_id: UUID
    student_name: str
    student_email: str
    student_institute: str | None = None
    verifier_id: UUID
    verifier_name: str
    verifier_email: str
    verifier_institute: str
    referee: RefereeContactResponse
    status: BackgroundVerificationStatus
    submitted_at: datetime | None = None
    chat_id: UUID | None = None


class StartChatRequest(BaseModel):
    """Request body for POST /bg-verifications/requests/{id}/start-chat."""

    shared_contact_id: UUID


RequestStatusFilter = Literal["PENDING", "SUBMITTED", "ALL"]

# ============================================
# Chats
# ============================================


class ChatMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)

    @field_validator("message")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v


class ChatMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_id: UUID
    sender_email: str
    sender_name: str
    sender_role: str
    message: str
    created_at: datetime


class ChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    bg_verification_id: UUID
    requesting_verifier_id: UUID
    requesting_verifier_email: str
    shared_contact_id: UUID
    shared_contact_email: str
    student_id: UUID
    student_email: str
    last_message_at: datetime | None = None
    is_active: bool
    created_at: datetime
    messages: list[ChatMessageResponse] = []


class ChatSummaryResponse(BaseModel):
    """Chat list entry; messages are not included."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    bg_verification_id: UUID
    requesting_verifier_email: str
    shared_contact_email: str
    student_email: str
    last_message_at: datetime | None = None
    is_active: bool
    created_at: datetime


class StartChatResponse(BaseModel):
    chat: ChatResponse
    created: bool
