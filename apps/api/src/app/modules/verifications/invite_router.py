"""
Verifier Invites Router

Endpoints:
- POST /verifier-invites                        Create an invite (item owner)
- POST /verifier-invites/preview                Describe an invite from its token
- POST /verifier-invites/{id}/resend            Re-send with a new link (creator only)
- POST /verifier-invites/{id}/claim             Accept the invite, get an action token
- POST /verifier-invites/{id}/create-account    Create a verifier account
- POST /verifier-invites/{id}/report-abuse      Revoke the invite

Preview, claim, create-account and report-abuse are authenticated by the
token in the request body, not by a session.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser, get_current_user
from app.core.database import get_db
from app.core.exceptions import ServiceError, internal_http_exception, to_http_exception
from app.core.rate_limit import rate_limit
from app.modules.auth.schemas import SessionResponse
from app.modules.verifications import invites
from app.modules.verifications.schemas import (
    CreateAccountRequest,
    InviteClaimResponse,
    InviteCreateRequest,
    InviteCreateResponse,
    InvitePreviewResponse,
    InviteResendResponse,
    OkResponse,
    OptionalTokenRequest,
    TokenRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_key(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    client_ip = request.client.host if request.client else "unknown"
    return f"rate_limit:{request.url.path}:{auth[-16:] or client_ip}"


@router.post(
    "",
    response_model=InviteCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite External Verifier",
)
@rate_limit(limit=20, window_seconds=3600, key_func=_user_key)
async def create_invite(
    request: Request,
    data: InviteCreateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InviteCreateResponse:
    """
    Invite an external verifier to approve or reject one of your items.

    Pass either an existing `verification_id` or `email` + `item_type` +
    `item_id`. A pending verification is created for the item if needed.

    Raises:
        HTTPException 400: Unsupported item type, or item pending with another verifier
        HTTPException 403: Item belongs to someone else
        HTTPException 404: Item or verification not found
        HTTPException 409: A pending invite already exists for this email
    """
    try:
        return await invites.create_invite(db, user, data)
    except ServiceError as e:
        logger.warning(f"Invite creation rejected: {e.error_code} {e.message}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error creating invite: {e}")
        raise internal_http_exception() from e


@router.post("/preview", response_model=InvitePreviewResponse, summary="Preview Invite")
async def preview_invite(
    data: TokenRequest,
    db: AsyncSession = Depends(get_db),
) -> InvitePreviewResponse:
    """
    Show what an invite asks for. Read-only; does not claim the invite.

    Raises:
        HTTPException 400: Invalid token
        HTTPException 404: Invite not found
        HTTPException 410: Token expired or superseded, or invite no longer pending
    """
    try:
        return await invites.preview_invite(db, data.token)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error previewing invite: {e}")
        raise internal_http_exception() from e


@router.post("/{invite_id}/resend", response_model=InviteResendResponse, summary="Resend Invite")
@rate_limit(limit=5, window_seconds=3600, key_func=_user_key)
async def resend_invite(
    request: Request,
    invite_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> InviteResendResponse:
    """
    Re-send the invite email with a new link. Earlier links stop working.

    Raises:
        HTTPException 403: Not the invite's creator
        HTTPException 404: Invite not found
        HTTPException 410: Invite no longer pending
    """
    try:
        return await invites.resend_invite(db, invite_id, user)
    except ServiceError as e:
        logger.warning(f"Invite resend rejected: {e.error_code}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error resending invite {invite_id}: {e}")
        raise internal_http_exception() from e


@router.post("/{invite_id}/claim", response_model=InviteClaimResponse, summary="Claim Invite")
@rate_limit(limit=10, window_seconds=600)
async def claim_invite(
    request: Request,
    invite_id: UUID,
    data: TokenRequest,
    db: AsyncSession = Depends(get_db),
) -> InviteClaimResponse:
    """
    Accept an invite using the emailed token.

    Always returns a short-lived `action_token`. When an account already
    exists for the invited email, `token` holds a session token as well.

    Raises:
        HTTPException 400: Invalid token
        HTTPException 403: Token email does not match the invite
        HTTPException 404: Invite not found
        HTTPException 409: Claimed concurrently
        HTTPException 410: Token expired or superseded, or invite already used
    """
    try:
        return await invites.claim_invite(db, invite_id, data.token)
    except ServiceError as e:
        logger.warning(f"Invite claim rejected: {e.error_code}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error claiming invite {invite_id}: {e}")
        raise internal_http_exception() from e


@router.post(
    "/{invite_id}/create-account",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Verifier Account",
)
@rate_limit(limit=5, window_seconds=600)
async def create_account(
    request: Request,
    invite_id: UUID,
    data: CreateAccountRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """
    Create a verifier account for the invited email.

    Accepts the invite-claim token or the action token.

    Raises:
        HTTPException 400: Invalid token, or an account already exists
        HTTPException 403: Token email does not match the invite
        HTTPException 410: Token expired or superseded, or invite revoked
    """
    try:
        return await invites.create_account_from_invite(
            db, invite_id, data.token, data.password, data.name
        )
    except ServiceError as e:
        logger.warning(f"Account creation from invite rejected: {e.error_code}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error creating account from invite {invite_id}: {e}")
        raise internal_http_exception() from e


@router.post("/{invite_id}/report-abuse", response_model=OkResponse, summary="Report Abuse")
async def report_abuse(
    invite_id: UUID,
    data: OptionalTokenRequest,
    db: AsyncSession = Depends(get_db),
) -> OkResponse:
    """Revoke an unwanted invite. Works whatever the invite's current status."""
    try:
        await invites.report_abuse(db, invite_id, data.token)
        return OkResponse(ok=True)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error reporting invite {invite_id}: {e}")
        raise internal_http_exception() from e
