"""
Notification Outbox Models

Outgoing notifications are written to the outbox in the same transaction as
the state change that triggers them. A dispatcher sends them after commit and
a scheduled job retries the ones that failed.
"""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.modules.shared import BaseModel


class NotificationKind(str, enum.Enum):
    """Kinds of outgoing notification, one per email template."""

    VERIFIER_INVITE = "verifier_invite"
    VERIFICATION_REQUEST = "verification_request"
    VERIFICATION_DECISION = "verification_decision"
    BG_REQUEST_TO_STUDENT = "bg_request_to_student"
    BG_REFEREE_NOTIFICATION = "bg_referee_notification"
    BG_MAGIC_LINK = "bg_magic_link"


class OutboxStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class OutboxMessage(BaseModel):
    """A queued notification and its delivery state."""

    __tablename__ = "outbox_messages"

    kind: Mapped[NotificationKind] = mapped_column(
        Enum(NotificationKind, name="notification_kind"), nullable=False
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    status: Mapped[OutboxStatus] = mapped_column(
        Enum(OutboxStatus, name="outbox_status"),
        nullable=False,
        default=OutboxStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    recipient: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_outbox_messages_status_created", "status", "created_at"),)
