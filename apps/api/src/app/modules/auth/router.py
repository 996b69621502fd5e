"""
Authentication Router

Endpoints:
- POST /auth/login                       Email + password sign-in
- GET  /auth/magic-link/{token}          Validate a magic link without consuming it
- POST /auth/magic-link/set-password     Consume a magic link, set a password, sign in
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import ServiceError, internal_http_exception, to_http_exception
from app.core.rate_limit import rate_limit
from app.modules.auth import service
from app.modules.auth.schemas import (
    LoginRequest,
    MagicLinkPreviewResponse,
    MagicLinkSessionResponse,
    SessionResponse,
    SetPasswordRequest,
)
from app.modules.magic_links import service as magic_links

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=SessionResponse)
@rate_limit(limit=10, window_seconds=300)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """
    Authenticate user and return JWT tokens.

    Raises:
        HTTPException 401: Invalid credentials
        HTTPException 403: Account inactive
    """
    try:
        return await service.authenticate(db, credentials.email, credentials.password)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/magic-link/{token}", response_model=MagicLinkPreviewResponse)
async def validate_magic_link(
    token: str,
    redirect: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> MagicLinkPreviewResponse:
    """
    Check a magic link and report where it leads. The link stays usable.

    Raises:
        HTTPException 400: Unknown link
        HTTPException 404: Account not found
        HTTPException 410: Link used or expired
    """
    try:
        return await magic_links.peek_magic_link(db, token, redirect)
    except ServiceError as e:
        logger.warning(f"Magic link validation failed: {e.error_code}")
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error validating magic link: {e}")
        raise internal_http_exception() from e


@router.post("/magic-link/set-password", response_model=MagicLinkSessionResponse)
@rate_limit(limit=5, window_seconds=600)
async def set_password_with_magic_link(
    request: Request,
    data: SetPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> MagicLinkSessionResponse:
    """
    Use a magic link once to set a password and sign in.

    Raises:
        HTTPException 400: Unknown link
        HTTPException 404: Account not found
        HTTPException 410: Link used or expired
    """
    try:
        return await magic_links.consume_magic_link_and_set_password(db, data.token, data.password)
    except ServiceError as e:
        logger.warning(f"Magic link sign-in failed: {e.error_code}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error consuming magic link: {e}")
        raise internal_http_exception() from e
