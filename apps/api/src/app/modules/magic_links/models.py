"""
Magic Link Models

Single-use bearer credentials that authenticate an email address directly.
Used to bring off-platform referees into a background verification chat.
"""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Enum, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.modules.shared import BaseModel


class MagicLinkType(str, enum.Enum):
    """What a magic link was issued for."""

    BG_VERIFICATION = "BG_VERIFICATION"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"
    INVITE = "INVITE"


class MagicLinkToken(BaseModel):
    """
    A magic link token.

    Only the SHA-256 hash of the token is stored; the plain token exists
    only in the emailed link. `used` flips to True exactly once, in the same
    UPDATE that looks the token up.

    context examples: {"bg_verification_id", "chat_id", "user_id"}
    """

    __tablename__ = "magic_link_tokens"

    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[MagicLinkType] = mapped_column(
        Enum(MagicLinkType, name="magic_link_type"), nullable=False
    )
    context: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)

    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
