"""
Background Verification Models

- BackgroundVerification: a verifier's background check on one student
- BackgroundVerificationChat: a 1:1 thread between the requesting verifier
  and one referee, scoped to one background check
- BackgroundVerificationChatMessage: messages in a chat, oldest first

Referee contacts are stored as a JSONB list on the request:
    [{name, email, phone, role, submitted_at, user_id}, ...]
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.modules.shared import BaseModel

MAX_REFEREES = 3
MAX_MESSAGE_LENGTH = 2000


class BackgroundVerificationStatus(str, enum.Enum):
    """Status of a background check. `completed` is a separate flag."""

    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"


class BackgroundVerification(BaseModel):
    """
    A background check requested by a verifier on a student.

    At most one active (PENDING or SUBMITTED, not completed) check exists per
    (student, verifier) pair. Rows are deleted by the expiry job once
    expires_at passes, and every "active" query also filters on expires_at.
    """

    __tablename__ = "background_verifications"

    # Student snapshot
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_name: Mapped[str] = mapped_column(String(200), nullable=False)
    student_email: Mapped[str] = mapped_column(String(255), nullable=False)
    student_institute: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Requesting verifier snapshot
    verifier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    verifier_name: Mapped[str] = mapped_column(String(200), nullable=False)
    verifier_email: Mapped[str] = mapped_column(String(255), nullable=False)
    verifier_institute: Mapped[str] = mapped_column(String(200), nullable=False)

    referee_contacts_requested: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    referee_contacts: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, default=list, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[BackgroundVerificationStatus] = mapped_column(
        Enum(BackgroundVerificationStatus, name="bg_verification_status"),
        nullable=False,
        default=BackgroundVerificationStatus.PENDING,
    )

    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(
            f"referee_contacts_requested BETWEEN 1 AND {MAX_REFEREES}",
            name="ck_bg_verifications_referees_requested",
        ),
        Index(
            "ix_bg_verifications_unique_active",
            "student_id",
            "verifier_id",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'SUBMITTED') AND completed = false"),
        ),
        Index("ix_bg_verifications_referee_contacts", "referee_contacts", postgresql_using="gin"),
    )


class BackgroundVerificationChat(BaseModel):
    """
    Chat between the requesting verifier and one shared referee contact.

    The student is recorded for context only and is not a participant.
    """

    __tablename__ = "background_verification_chats"

    bg_verification_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("background_verifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    requesting_verifier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requesting_verifier_email: Mapped[str] = mapped_column(String(255), nullable=False)

    shared_contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    shared_contact_email: Mapped[str] = mapped_column(String(255), nullable=False)

    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    student_email: Mapped[str] = mapped_column(String(255), nullable=False)

    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    messages: Mapped[list["BackgroundVerificationChatMessage"]] = relationship(
        "BackgroundVerificationChatMessage",
        back_populates="chat",
        order_by="BackgroundVerificationChatMessage.created_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint(
            "bg_verification_id",
            "requesting_verifier_id",
            "shared_contact_id",
            name="uq_bg_chats_participants",
        ),
    )

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.requesting_verifier_id, self.shared_contact_id)


class BackgroundVerificationChatMessage(Base):
    """One chat message. Append-only."""

    __tablename__ = "background_verification_chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chat_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("background_verification_chats.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    sender_email: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_name: Mapped[str] = mapped_column(String(200), nullable=False)
    sender_role: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    chat: Mapped["BackgroundVerificationChat"] = relationship(
        "BackgroundVerificationChat", back_populates="messages"
    )

    __table_args__ = (
        Index("ix_bg_chat_messages_chat_created", "chat_id", "created_at"),
        CheckConstraint(
            f"char_length(message) BETWEEN 1 AND {MAX_MESSAGE_LENGTH}",
            name="ck_bg_chat_messages_length",
        ),
    )
