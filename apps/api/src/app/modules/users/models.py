"""
User Models

Database models for user identity and authentication.
"""

from enum import Enum

from sqlalchemy import Boolean, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.modules.shared import BaseModel


class UserRole(str, Enum):
    """User roles in the system."""

    STUDENT = "STUDENT"
    VERIFIER = "VERIFIER"


class User(BaseModel):
    """
    User model for authentication and authorization.

    Students own claim items and are the subject of background checks.
    Verifiers are institute staff who decide on claims and run background
    checks. Referees without an account are created as placeholder
    VERIFIER users with `external_contact=True` and an unusable password
    until they set one through a magic link.
    """

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Always stored lowercase
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)

    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.STUDENT,
    )
    institute: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)

    # Account status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    profile_setup_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Placeholder account created for an off-platform referee
    external_contact: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"
