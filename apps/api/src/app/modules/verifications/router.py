"""
Verifications Router

Endpoints:
- POST /verifications/{id}/decision   Approve or deny (action token or verifier session)
- POST /verifications/{id}/details    Item, owner and audit log for the decider
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser, get_optional_user
from app.core.database import get_db
from app.core.exceptions import ServiceError, internal_http_exception, to_http_exception
from app.modules.verifications import decisions
from app.modules.verifications.decisions import DecisionActor
from app.modules.verifications.schemas import (
    DecisionRequest,
    DecisionResponse,
    OptionalTokenRequest,
    VerificationDetailsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def _resolve_actor(
    db: AsyncSession,
    token: str | None,
    user: CurrentUser | None,
) -> DecisionActor:
    """Prefer the action token; fall back to a verifier session."""
    if token:
        return await decisions.resolve_actor_from_action_token(db, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "AUTHENTICATION_REQUIRED",
                "message": "Provide an action token or sign in as a verifier.",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decisions.actor_from_session(user)


@router.post(
    "/{verification_id}/decision",
    response_model=DecisionResponse,
    summary="Decide on Verification",
)
async def decide(
    verification_id: UUID,
    data: DecisionRequest,
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> DecisionResponse:
    """
    Approve or deny a pending verification.

    Authenticate with the action token from the invite claim, or with a
    verifier session. Only the designated verifier may decide, and only once.

    Raises:
        HTTPException 401: No credential supplied
        HTTPException 403: Not the designated verifier
        HTTPException 404: Verification not found
        HTTPException 410: Already decided, or token expired/superseded
    """
    try:
        actor = await _resolve_actor(db, data.token, user)
        return await decisions.process_decision(
            db, verification_id, data.decision, data.comment, actor
        )
    except ServiceError as e:
        logger.warning(f"Decision on {verification_id} rejected: {e.error_code}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error deciding verification {verification_id}: {e}")
        raise internal_http_exception() from e


@router.post(
    "/{verification_id}/details",
    response_model=VerificationDetailsResponse,
    summary="Verification Details",
)
async def details(
    verification_id: UUID,
    data: OptionalTokenRequest,
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> VerificationDetailsResponse:
    """Item, owner and audit history for the designated verifier."""
    try:
        actor = await _resolve_actor(db, data.token, user)
        return await decisions.get_verification_details(db, verification_id, actor)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error loading verification {verification_id}: {e}")
        raise internal_http_exception() from e
