"""
Background Verifications Router

Verifier endpoints:
- GET  /bg-verifications/search                         Search students at other institutes
- POST /bg-verifications/request                        Request a background check
- GET  /bg-verifications/requests                       Requests I made
- POST /bg-verifications/{id}/complete                  Mark a request completed
- POST /bg-verifications/requests/{id}/start-chat       Open a chat with a referee
- GET  /bg-verifications/shared-requests                Requests that list me as a referee
- POST /bg-verifications/shared-requests/{id}/start-chat  Open a chat as a referee

Student endpoints:
- GET  /bg-verifications/my-requests                    Active requests about me
- POST /bg-verifications/{id}/submit-references         Submit referee contacts

Chat endpoints (participants only):
- GET  /bg-verifications/chats
- GET  /bg-verifications/chat/{chat_id}
- POST /bg-verifications/chat/{chat_id}/message
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser, get_current_user, require_student, require_verifier
from app.core.database import get_db
from app.core.exceptions import ServiceError, internal_http_exception, to_http_exception
from app.core.rate_limit import rate_limit
from app.modules.background_verifications import chat as chat_manager
from app.modules.background_verifications import service
from app.modules.background_verifications.schemas import (
    BackgroundVerificationCreateRequest,
    BackgroundVerificationListResponse,
    BackgroundVerificationResponse,
    ChatMessageRequest,
    ChatMessageResponse,
    ChatResponse,
    ChatSummaryResponse,
    RequestStatusFilter,
    SharedRequestResponse,
    StartChatRequest,
    StartChatResponse,
    StudentSearchResponse,
    SubmitReferencesRequest,
    SubmitReferencesResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_key(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    client_ip = request.client.host if request.client else "unknown"
    return f"rate_limit:{request.url.path}:{auth[-16:] or client_ip}"


# ============================================
# Verifier: search & request
# ============================================


@router.get("/search", response_model=StudentSearchResponse, summary="Search Students")
async def search_students(
    q: str | None = Query(None, max_length=100, description="Name or email contains"),
    institute: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(require_verifier),
    db: AsyncSession = Depends(get_db),
) -> StudentSearchResponse:
    """Search students outside your institute, flagging ones you already have a request for."""
    try:
        return await service.search_students(
            db, user, query=q, institute=institute, page=page, limit=limit
        )
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error searching students: {e}")
        raise internal_http_exception() from e


@router.post(
    "/request",
    response_model=BackgroundVerificationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request Background Verification",
)
@rate_limit(limit=30, window_seconds=3600, key_func=_user_key)
async def request_background_verification(
    request: Request,
    data: BackgroundVerificationCreateRequest,
    user: CurrentUser = Depends(require_verifier),
    db: AsyncSession = Depends(get_db),
) -> BackgroundVerificationResponse:
    """
    Ask a student from another institute for referee contacts.

    Raises:
        HTTPException 400: Same institute, or you have no institute set
        HTTPException 404: Student not found
        HTTPException 409: An active request already exists for this student
    """
    try:
        return await service.request_background_verification(db, user, data)
    except ServiceError as e:
        logger.warning(f"Background verification request rejected: {e.error_code} {e.message}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error requesting background verification: {e}")
        raise internal_http_exception() from e


@router.get("/requests", response_model=BackgroundVerificationListResponse, summary="My Requests (Verifier)")
async def list_verifier_requests(
    status_filter: RequestStatusFilter = Query("ALL", alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(require_verifier),
    db: AsyncSession = Depends(get_db),
) -> BackgroundVerificationListResponse:
    """Requests you created, with each referee's account status."""
    try:
        return await service.list_verifier_requests(
            db, user, status_filter=status_filter, page=page, limit=limit
        )
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error listing verifier requests: {e}")
        raise internal_http_exception() from e


@router.post("/{request_id}/complete", response_model=BackgroundVerificationResponse, summary="Complete Request")
async def complete_request(
    request_id: UUID,
    user: CurrentUser = Depends(require_verifier),
    db: AsyncSession = Depends(get_db),
) -> BackgroundVerificationResponse:
    """
    Mark a request completed.

    Raises:
        HTTPException 403: You did not create this request
        HTTPException 404: Request not found or expired
        HTTPException 410: Already completed
    """
    try:
        return await service.mark_completed(db, user, request_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error completing request {request_id}: {e}")
        raise internal_http_exception() from e


@router.post(
    "/requests/{request_id}/start-chat",
    response_model=StartChatResponse,
    summary="Start Chat With Referee",
)
async def start_chat_as_requester(
    request_id: UUID,
    data: StartChatRequest,
    user: CurrentUser = Depends(require_verifier),
    db: AsyncSession = Depends(get_db),
) -> StartChatResponse:
    """
    Open the chat with one of your request's referees. Idempotent.

    Raises:
        HTTPException 400: User was not listed as a referee
        HTTPException 403: You did not create this request
        HTTPException 404: Request or user not found
    """
    try:
        return await service.start_chat_as_requester(db, user, request_id, data.shared_contact_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error starting chat for request {request_id}: {e}")
        raise internal_http_exception() from e


# ============================================
# Verifier as referee
# ============================================


@router.get("/shared-requests", response_model=list[SharedRequestResponse], summary="Shared With Me")
async def list_shared_requests(
    user: CurrentUser = Depends(require_verifier),
    db: AsyncSession = Depends(get_db),
) -> list[SharedRequestResponse]:
    """Submitted requests in which you were listed as a referee."""
    try:
        return await service.list_shared_requests(db, user)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error listing shared requests: {e}")
        raise internal_http_exception() from e


@router.post(
    "/shared-requests/{request_id}/start-chat",
    response_model=StartChatResponse,
    summary="Start Chat As Referee",
)
async def start_chat_as_referee(
    request_id: UUID,
    user: CurrentUser = Depends(require_verifier),
    db: AsyncSession = Depends(get_db),
) -> StartChatResponse:
    """
    Open the chat with the requesting verifier. Idempotent.

    Raises:
        HTTPException 403: The request was not shared with you
        HTTPException 404: Request not found or expired
    """
    try:
        return await service.start_chat_as_referee(db, user, request_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error starting referee chat for request {request_id}: {e}")
        raise internal_http_exception() from e


# ============================================
# Student
# ============================================


@router.get("/my-requests", response_model=list[BackgroundVerificationResponse], summary="My Requests (Student)")
async def list_my_requests(
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> list[BackgroundVerificationResponse]:
    """Active background checks on you."""
    try:
        return await service.list_student_requests(db, user)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error listing student requests: {e}")
        raise internal_http_exception() from e


@router.post(
    "/{request_id}/submit-references",
    response_model=SubmitReferencesResponse,
    summary="Submit Referees",
)
@rate_limit(limit=10, window_seconds=3600, key_func=_user_key)
async def submit_references(
    request: Request,
    request_id: UUID,
    data: SubmitReferencesRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
) -> SubmitReferencesResponse:
    """
    Submit referee contacts. Each referee gets a chat with the verifier.

    Raises:
        HTTPException 400: Too few, duplicate or invalid referees
        HTTPException 403: Request is not addressed to you
        HTTPException 404: Request not found or expired
        HTTPException 410: Referees already submitted
    """
    try:
        return await service.submit_references(db, user, request_id, data)
    except ServiceError as e:
        logger.warning(f"Referee submission rejected for {request_id}: {e.error_code} {e.message}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error submitting referees for {request_id}: {e}")
        raise internal_http_exception() from e


# ============================================
# Chats
# ============================================


@router.get("/chats", response_model=list[ChatSummaryResponse], summary="My Chats")
async def list_chats(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ChatSummaryResponse]:
    """Chats you take part in, most recently active first."""
    try:
        chats = await chat_manager.list_chats_for_participant(db, user)
        return [ChatSummaryResponse.model_validate(c) for c in chats]
    except Exception as e:
        logger.exception(f"Unexpected error listing chats: {e}")
        raise internal_http_exception() from e


@router.get("/chat/{chat_id}", response_model=ChatResponse, summary="Get Chat")
async def get_chat(
    chat_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ChatResponse:
    """
    A chat with its messages, oldest first.

    Raises:
        HTTPException 403: Not a participant
        HTTPException 404: Chat not found
    """
    try:
        return ChatResponse.model_validate(await chat_manager.get_chat(db, chat_id, user))
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error loading chat {chat_id}: {e}")
        raise internal_http_exception() from e


@router.post(
    "/chat/{chat_id}/message",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send Message",
)
@rate_limit(limit=60, window_seconds=60, key_func=_user_key)
async def send_message(
    request: Request,
    chat_id: UUID,
    data: ChatMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ChatMessageResponse:
    """
    Post a message to a chat.

    Raises:
        HTTPException 400: Empty message or chat closed
        HTTPException 403: Not a participant
        HTTPException 404: Chat not found
    """
    try:
        message = await chat_manager.add_message(db, chat_id, user, data.message)
        return ChatMessageResponse.model_validate(message)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error sending message to chat {chat_id}: {e}")
        raise internal_http_exception() from e
