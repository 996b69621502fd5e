"""Authentication module - password login and magic-link sign-in."""

from app.modules.auth.router import router
from app.modules.auth.schemas import LoginRequest, SessionResponse, UserResponse

__all__ = ["router", "LoginRequest", "SessionResponse", "UserResponse"]
