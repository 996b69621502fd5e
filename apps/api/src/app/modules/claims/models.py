"""
Claim Item Models

Education and experience entries on a student's portfolio. Both carry the
same set of verification columns, written by the decision processor when a
verifier approves or rejects the entry.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from app.modules.shared import BaseModel


class ItemType(str, enum.Enum):
    """Kinds of portfolio items that can be sent for verification."""

    EDUCATION = "EDUCATION"
    EXPERIENCE = "EXPERIENCE"
    # Verified through repository ownership, never through external invites
    GITHUB_PROJECT = "GITHUB_PROJECT"


class VerifiableColumnsMixin:
    """Owner reference and verification result columns shared by claim items."""

    @declared_attr
    def user_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            UUID(as_uuid=True),
            ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verifier_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    verifier_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verifier_organization: Mapped[str | None] = mapped_column(String(200), nullable=True)


class Education(VerifiableColumnsMixin, BaseModel):
    """An education entry (degree, diploma, course)."""

    __tablename__ = "education"

    institution: Mapped[str] = mapped_column(String(200), nullable=False)
    degree: Mapped[str] = mapped_column(String(200), nullable=False)
    field_of_study: Mapped[str | None] = mapped_column(String(200), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class Experience(VerifiableColumnsMixin, BaseModel):
    """A work or volunteering experience entry."""

    __tablename__ = "experience"

    organization: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
