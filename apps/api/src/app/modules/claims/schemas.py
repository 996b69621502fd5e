"""
Claims Schemas

Pydantic schemas for creating and editing education and experience items.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from app.modules.claims.models import ItemType
from app.modules.verifications.models import VerificationStatus

# ============================================
# Verification request (shared)
# ============================================


class VerificationRequestFields(BaseModel):
    """
    Optional fields asking for a platform verifier to review the item.

    Either flag alone is enough as long as `verifier_email` is given.
    """

    request_verification: bool = False
    verifier_email: EmailStr | None = None

    @field_validator("verifier_email", mode="after")
    @classmethod
    def normalize_verifier_email(cls, v: str | None) -> str | None:
        return v.lower() if v else v

    @property
    def wants_verification(self) -> bool:
        return bool(self.verifier_email)


def _check_dates(start: date | None, end: date | None) -> None:
    if start and end and end < start:
        raise ValueError("end_date must not be before start_date")


# ============================================
# Education
# ============================================


class EducationCreateRequest(VerificationRequestFields):
    """Request body for POST /claims/education."""

    institution: str = Field(..., min_length=1, max_length=200)
    degree: str = Field(..., min_length=1, max_length=200)
    field_of_study: str | None = Field(None, max_length=200)
    start_date: date | None = None
    end_date: date | None = None
    description: str | None = Field(None, max_length=5000)

    @model_validator(mode="after")
    def check_dates(self) -> "EducationCreateRequest":
        _check_dates(self.start_date, self.end_date)
        return self


class EducationUpdateRequest(VerificationRequestFields):
    """Request body for PATCH /claims/education/{id}. Omitted fields are left unchanged."""

    institution: str | None = Field(None, min_length=1, max_length=200)
    degree: str | None = Field(None, min_length=1, max_length=200)
    field_of_study: str | None = Field(None, max_length=200)
    start_date: date | None = None
    end_date: date | None = None
    description: str | None = Field(None, max_length=5000)


# ============================================
# Experience
# ============================================


class ExperienceCreateRequest(VerificationRequestFields):
    """Request body for POST /claims/experience."""

    organization: str = Field(..., min_length=1, max_length=200)
    role: str = Field(..., min_length=1, max_length=200)
    start_date: date | None = None
    end_date: date | None = None
    description: str | None = Field(None, max_length=5000)

    @model_validator(mode="after")
    def check_dates(self) -> "ExperienceCreateRequest":
        _check_dates(self.start_date, self.end_date)
        return self


class ExperienceUpdateRequest(VerificationRequestFields):
    """Request body for PATCH /claims/experience/{id}. Omitted fields are left unchanged."""

    organization: str | None = Field(None, min_length=1, max_length=200)
    role: str | None = Field(None, min_length=1, max_length=200)
    start_date: date | None = None
    end_date: date | None = None
    description: str | None = Field(None, max_length=5000)


# ============================================
# Responses
# ============================================


class VerificationSummary(BaseModel):
    id: UUID
    status: VerificationStatus
    verifier_email: str
    expires_at: datetime
    created: bool


class ClaimItemResponse(BaseModel):
    """An item together with the verification started for it, if any."""

    id: UUID
    item_type: ItemType
    title: str
    details: dict[str, Any]
    verified: bool
    verified_at: datetime | None = None
    verified_by: str | None = None
    verifier_comment: str | None = None
    verification: VerificationSummary | None = None
    # Why no verification was started when one was asked for
    verification_note: str | None = None
