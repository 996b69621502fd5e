"""
Verification Models

Database models for the claim verification workflow:
- Verification: one verification cycle for one claim item
- VerificationLog: append-only audit of verification transitions
- VerifierInvite: an emailed invitation for an external verifier

Uniqueness of "active" rows is enforced by partial unique indexes so that
concurrent requests cannot create two pending cycles for the same item or two
pending invites for the same (verification, email).
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.modules.claims.models import ItemType
from app.modules.shared import BaseModel


class VerificationStatus(str, enum.Enum):
    """Status of a verification cycle."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    # PENDING cycle whose expires_at passed; frees the item for a new cycle
    EXPIRED = "EXPIRED"


class VerificationAction(str, enum.Enum):
    """Audit log actions."""

    CREATED = "CREATED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Decision(str, enum.Enum):
    """Verifier decision on a claim."""

    APPROVE = "APPROVE"
    DENY = "DENY"


class InviteStatus(str, enum.Enum):
    """Status of a verifier invitation."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"
    REJECTED = "REJECTED"


class Verification(BaseModel):
    """
    One verification cycle for a claim item.

    At most one PENDING row exists per (item_id, item_type). A PENDING row
    whose expires_at has passed is flipped to EXPIRED before a new cycle is
    created for the same item.
    """

    __tablename__ = "verifications"

    item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    item_type: Mapped[ItemType] = mapped_column(Enum(ItemType, name="item_type"), nullable=False)

    # Always stored lowercase
    verifier_email: Mapped[str] = mapped_column(String(255), nullable=False)
    verifier_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verifier_organization: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, name="verification_status"),
        nullable=False,
        default=VerificationStatus.PENDING,
    )

    # jti of the most recent invite-claim token issued against this cycle
    token: Mapped[str | None] = mapped_column(String(64), nullable=True)

    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_verifications_item", "item_id", "item_type"),
        Index("ix_verifications_verifier_email", "verifier_email"),
        Index(
            "ix_verifications_unique_pending_item",
            "item_id",
            "item_type",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
        ),
    )


class VerificationLog(Base):
    """
    Append-only audit entry for a verification transition.

    Rows are never updated or deleted.
    """

    __tablename__ = "verification_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    verification_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("verifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[VerificationAction] = mapped_column(
        Enum(VerificationAction, name="verification_action"), nullable=False
    )
    actor_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class VerifierInvite(BaseModel):
    """
    An invitation for one email address to verify one Verification.

    token_jti is the jti of the only invite-claim token currently honoured for
    this invite; issuing a new token overwrites it and thereby revokes every
    earlier link. action_token_jti plays the same role for the short-lived
    action token minted on claim.
    """

    __tablename__ = "verifier_invites"

    verification_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("verifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    email_lower: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    organization: Mapped[str | None] = mapped_column(String(200), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    status: Mapped[InviteStatus] = mapped_column(
        Enum(InviteStatus, name="invite_status"),
        nullable=False,
        default=InviteStatus.PENDING,
    )
    status_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Invite-claim token
    token_jti: Mapped[str] = mapped_column(String(64), nullable=False)
    token_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Verification-action token (minted on claim)
    action_token_jti: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    used_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    last_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notify_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    complaint_flag: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # [{action, by, at, meta}, ...] in insertion order
    audit: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list, nullable=False)

    __table_args__ = (
        Index(
            "ix_verifier_invites_unique_pending",
            "verification_id",
            "email_lower",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
        ),
    )
