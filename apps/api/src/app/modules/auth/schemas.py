"""Authentication schemas."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    """Login request schema."""

    email: EmailStr
    password: str


class UserResponse(BaseModel):
    """Public view of a user account."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: str
    institute: str | None = None
    email_verified: bool
    external_contact: bool = False


class SessionResponse(BaseModel):
    """Session tokens issued after login, account creation or magic-link sign-in."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class MagicLinkPreviewResponse(BaseModel):
    """Result of validating a magic link without consuming it."""

    valid: bool = True
    email: str
    type: str
    user: UserResponse
    redirect: str


class SetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=128)


class MagicLinkSessionResponse(SessionResponse):
    redirect: str
