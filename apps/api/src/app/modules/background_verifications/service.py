"""
Background Verification Service

Lifecycle of a verifier's background check on a student:

    request (PENDING) -> student submits referees (SUBMITTED) -> completed flag

- A verifier may request a check on a student from another institute. Only
  one active check per (student, verifier) pair exists at a time, enforced by
  the `ix_bg_verifications_unique_active` partial index.
- On submission every referee is resolved to a VERIFIER account. Referees
  without one get a placeholder account (random unusable password,
  external_contact=True) so the chat has a stable participant.
- A chat is opened per referee. Placeholder referees are emailed a magic link
  that lands them in the chat; platform users get a direct chat link.
- Completion is a flag the requesting verifier sets once. A completed check
  does not block a new request for the same pair.
- Requests expire after `bg_verification_ttl_days` and are deleted by the
  `bg_verifications_expire` job.

Emails go through the notification outbox; live events are best-effort.
"""

import logging
import math
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser
from app.core.config import settings
from app.core.events import publish_event, user_channel
from app.core.exceptions import (
    AlreadyProcessedError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.core.security import hash_password
from app.modules.background_verifications import chat as chat_manager
from app.modules.background_verifications import repository
from app.modules.background_verifications.models import (
    BackgroundVerification,
    BackgroundVerificationChat,
    BackgroundVerificationStatus,
)
from app.modules.background_verifications.schemas import (
    BackgroundVerificationCreateRequest,
    BackgroundVerificationListResponse,
    BackgroundVerificationResponse,
    ChatResponse,
    RefereeContactInput,
    RefereeContactResponse,
    RequestStatusFilter,
    SharedRequestResponse,
    StartChatResponse,
    StudentSearchResponse,
    StudentSearchResult,
    SubmitReferencesRequest,
    SubmitReferencesResponse,
)
from app.modules.magic_links.models import MagicLinkType
from app.modules.magic_links.service import issue_magic_link_token, magic_link_url
from app.modules.notifications import service as notifications
from app.modules.notifications.models import NotificationKind, OutboxMessage
from app.modules.users.models import User, UserRole
from app.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)


def _chat_url(chat_id: UUID) -> str:
    return f"{settings.frontend_url}/bg-chat/{chat_id}"


def _total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total > 0 else 0


async def _load_verifier(db: AsyncSession, user: CurrentUser) -> User:
    verifier = await UserRepository.get_by_id(db, user.id)
    if not verifier or verifier.role != UserRole.VERIFIER:
        raise ForbiddenError("Only verifiers can perform this action.")
    return verifier


async def _load_owned_request(
    db: AsyncSession,
    request_id: UUID,
    now: datetime,
) -> BackgroundVerification:
    request = await repository.get_by_id(db, request_id)
    if not request or request.expires_at <= now:
        raise NotFoundError("Background verification request", request_id)
    return request


# ============================================
# Search & request
# ============================================


async def search_students(
    db: AsyncSession,
    user: CurrentUser,
    *,
    query: str | None = None,
    institute: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> StudentSearchResponse:
    """
    Search students outside the verifier's own institute.

    Each result carries `has_active_request` so the client can disable the
    request button.
    """
    verifier = await _load_verifier(db, user)
    students, total = await UserRepository.search_students(
        db,
        query=query,
        institute=institute,
        exclude_institute=verifier.institute,
        page=page,
        limit=limit,
    )

    active = await repository.get_students_with_active_request(
        db, verifier.id, [s.id for s in students], datetime.now(UTC)
    )

    return StudentSearchResponse(
        students=[
            StudentSearchResult(
                id=s.id,
                name=s.name,
                email=s.email,
                institute=s.institute,
                has_active_request=s.id in active,
            )
            for s in students
        ],
        total=total,
        page=page,
        limit=limit,
        total_pages=_total_pages(total, limit),
    )


async def request_background_verification(
    db: AsyncSession,
    user: CurrentUser,
    data: BackgroundVerificationCreateRequest,
) -> BackgroundVerificationResponse:
    """
    Open a background check on a student and email them.

    Raises:
        ForbiddenError: Caller is not a verifier
        ValidationError: Verifier has no institute, or same institute as the student
        NotFoundError: Student not found
        ConflictError: An active check already exists for this pair
    """
    verifier = await _load_verifier(db, user)
    if not verifier.institute:
        raise ValidationError("Set your institute before requesting background verifications.")

    student = await UserRepository.get_by_id(db, data.student_id)
    if not student or student.role != UserRole.STUDENT:
        raise NotFoundError("Student", data.student_id)

    if student.institute and student.institute.strip().lower() == verifier.institute.strip().lower():
        raise ValidationError("You cannot request a background verification for a student of your own institute.")

    now = datetime.now(UTC)
    if await repository.get_active_for_pair(db, student.id, verifier.id, now):
        raise ConflictError("An active background verification already exists for this student.")

    purged = await repository.delete_expired_for_pair(db, student.id, verifier.id, now)
    if purged:
        logger.info(f"Purged {purged} expired background check(s) for student {student.id}")

    try:
        async with db.begin_nested():
            request = await repository.create(
                db,
                BackgroundVerification(
                    student_id=student.id,
                    student_name=student.name,
                    student_email=student.email,
                    student_institute=student.institute,
                    verifier_id=verifier.id,
                    verifier_name=verifier.name,
                    verifier_email=verifier.email,
                    verifier_institute=verifier.institute,
                    referee_contacts_requested=data.referee_contacts_requested,
                    referee_contacts=[],
                    notes=data.notes,
                    status=BackgroundVerificationStatus.PENDING,
                    completed=False,
                    requested_at=now,
                    expires_at=now + timedelta(days=settings.bg_verification_ttl_days),
                ),
            )
    except IntegrityError:
        raise ConflictError("An active background verification already exists for this student.") from None

    message = await notifications.enqueue(
        db,
        NotificationKind.BG_REQUEST_TO_STUDENT,
        {
            "to_email": student.email,
            "student_name": student.name,
            "verifier_name": verifier.name,
            "verifier_institute": verifier.institute,
            "referees_requested": data.referee_contacts_requested,
        },
    )
    await db.commit()

    logger.info(f"Background check {request.id} requested by {verifier.id} on student {student.id}")
    await notifications.dispatch_after_commit([message])

    return BackgroundVerificationResponse.model_validate(request)


async def list_student_requests(
    db: AsyncSession,
    user: CurrentUser,
) -> list[BackgroundVerificationResponse]:
    """Active background checks on the calling student."""
    if not user.is_student:
        raise ForbiddenError("Only students can view their background verification requests.")

    requests = await repository.list_for_student(db, user.id, datetime.now(UTC))
    return [BackgroundVerificationResponse.model_validate(r) for r in requests]


# ============================================
# Referee submission
# ============================================


def _validate_referees(
    request: BackgroundVerification,
    contacts: list[RefereeContactInput],
) -> None:
    if len(contacts) < request.referee_contacts_requested:
        raise ValidationError(
            f"Please provide {request.referee_contacts_requested} referee contact(s); "
            f"{len(contacts)} given."
        )

    emails = [c.email for c in contacts]
    if len(set(emails)) != len(emails):
        raise ValidationError("Each referee must have a different email address.")
    if request.student_email.lower() in emails:
        raise ValidationError("You cannot list yourself as a referee.")
    if request.verifier_email.lower() in emails:
        raise ValidationError("The requesting verifier cannot be listed as a referee.")


async def _resolve_referee(
    db: AsyncSession,
    contact: RefereeContactInput,
    known: dict[str, User],
) -> User:
    """
    Return the VERIFIER account for a referee, creating a placeholder if needed.

    Raises:
        ValidationError: The email belongs to a student account
    """
    user = known.get(contact.email)
    if user:
        if user.role != UserRole.VERIFIER:
            raise ValidationError(f"{contact.email} belongs to a student account and cannot be a referee.")
        return user

    try:
        async with db.begin_nested():
            user = await UserRepository.create(
                db,
                name=contact.name,
                email=contact.email,
                # Unusable until the referee sets a password through a magic link
                password_hash=hash_password(secrets.token_urlsafe(32)),
                role=UserRole.VERIFIER,
                email_verified=False,
                external_contact=True,
            )
    except IntegrityError:
        user = await UserRepository.get_by_email(db, contact.email)
        if user is None:
            raise ConflictError("Referee account could not be created. Please try again.") from None
        if user.role != UserRole.VERIFIER:
            raise ValidationError(f"{contact.email} belongs to a student account and cannot be a referee.") from None
        return user

    logger.info(f"Created placeholder account {user.id} for referee")
    return user


async def _notify_referee(
    db: AsyncSession,
    request: BackgroundVerification,
    contact: RefereeContactInput,
    referee: User,
    chat: BackgroundVerificationChat,
) -> OutboxMessage:
    """Queue a magic link for placeholder accounts, a chat link otherwise."""
    if referee.external_contact:
        token = await issue_magic_link_token(
            db,
            referee.email,
            MagicLinkType.BG_VERIFICATION,
            context={
                "bg_verification_id": request.id,
                "chat_id": chat.id,
                "user_id": referee.id,
            },
        )
        return await notifications.enqueue(
            db,
            NotificationKind.BG_MAGIC_LINK,
            {
                "to_email": referee.email,
                "referee_name": contact.name,
                "magic_link_url": magic_link_url(token, f"/bg-chat/{chat.id}"),
                "verifier_name": request.verifier_name,
                "student_name": request.student_name,
            },
        )

    return await notifications.enqueue(
        db,
        NotificationKind.BG_REFEREE_NOTIFICATION,
        {
            "to_email": referee.email,
            "referee_name": contact.name,
            "verifier_name": request.verifier_name,
            "student_name": request.student_name,
            "chat_url": _chat_url(chat.id),
        },
    )


async def submit_references(
    db: AsyncSession,
    user: CurrentUser,
    request_id: UUID,
    data: SubmitReferencesRequest,
) -> SubmitReferencesResponse:
    """
    Attach referee contacts to a PENDING request and open a chat per referee.

    The status change, referee accounts, chats, magic links and queued emails
    commit together. Emails and live events follow after commit.

    Raises:
        ForbiddenError: Caller is not the request's student
        NotFoundError: Request not found or expired
        AlreadyProcessedError: Request is no longer PENDING
        ValidationError: Too few, duplicate or self referees; referee is a student
    """
    if not user.is_student:
        raise ForbiddenError("Only students can submit referee contacts.")

    now = datetime.now(UTC)
    request = await _load_owned_request(db, request_id, now)
    if request.student_id != user.id:
        raise ForbiddenError("This background verification request is not addressed to you.")
    if request.status != BackgroundVerificationStatus.PENDING:
        raise AlreadyProcessedError("Referee contacts have already been submitted for this request.")

    contacts = data.referee_contacts
    _validate_referees(request, contacts)

    known = await UserRepository.get_many_by_emails(db, [c.email for c in contacts])
    referees = [await _resolve_referee(db, c, known) for c in contacts]

    stored = [
        {
            "name": c.name,
            "email": c.email,
            "phone": c.phone,
            "role": c.role,
            "submitted_at": now.isoformat(),
            "user_id": str(referee.id),
        }
        for c, referee in zip(contacts, referees, strict=True)
    ]

    if not await repository.submit_references(db, request.id, user.id, stored, now):
        await db.rollback()
        raise AlreadyProcessedError("Referee contacts have already been submitted for this request.")

    created_chats: list[tuple[BackgroundVerificationChat, User]] = []
    messages: list[OutboxMessage] = []
    chat_ids: list[UUID] = []

    for contact, referee in zip(contacts, referees, strict=True):
        chat, created = await chat_manager.find_or_create_chat(
            db,
            bg_verification_id=request.id,
            requesting_verifier_id=request.verifier_id,
            requesting_verifier_email=request.verifier_email,
            shared_contact_id=referee.id,
            shared_contact_email=referee.email,
            student_id=request.student_id,
            student_email=request.student_email,
        )
        chat_ids.append(chat.id)
        if created:
            created_chats.append((chat, referee))
        messages.append(await _notify_referee(db, request, contact, referee, chat))

    await db.commit()
    await db.refresh(request)

    logger.info(
        f"Background check {request.id} submitted with {len(contacts)} referee(s), "
        f"{len(created_chats)} new chat(s)"
    )

    for chat, referee in created_chats:
        event = {"chat_id": str(chat.id), "request_id": str(request.id)}
        await publish_event(user_channel(request.verifier_id), "bg_chat_created", event)
        await publish_event(user_channel(referee.id), "bg_chat_created", event)

    await notifications.dispatch_after_commit(messages)

    return SubmitReferencesResponse(
        request=BackgroundVerificationResponse.model_validate(request),
        chat_ids=chat_ids,
    )


# ============================================
# Verifier views
# ============================================


async def mark_completed(
    db: AsyncSession,
    user: CurrentUser,
    request_id: UUID,
) -> BackgroundVerificationResponse:
    """
    Flag a request as completed. Only the requesting verifier, only once.

    Raises:
        NotFoundError: Request not found or expired
        ForbiddenError: Caller did not create the request
        AlreadyProcessedError: Already completed
    """
    now = datetime.now(UTC)
    request = await _load_owned_request(db, request_id, now)
    if request.verifier_id != user.id:
        raise ForbiddenError("Only the requesting verifier can complete this request.")
    if request.completed:
        raise AlreadyProcessedError("This background verification is already completed.")

    if not await repository.mark_completed(db, request.id, user.id, now):
        await db.rollback()
        raise AlreadyProcessedError("This background verification is already completed.")

    await db.commit()
    await db.refresh(request)

    logger.info(f"Background check {request.id} marked completed by {user.id}")
    return BackgroundVerificationResponse.model_validate(request)


def _enrich_contacts(
    contacts: list[dict[str, Any]],
    users: dict[str, User],
) -> list[RefereeContactResponse]:
    enriched = []
    for contact in contacts or []:
        account = users.get(contact.get("email", ""))
        enriched.append(
            RefereeContactResponse(
                **contact,
                user_role=account.role.value if account else None,
                is_external=account.external_contact if account else None,
            )
        )
    return enriched


async def list_verifier_requests(
    db: AsyncSession,
    user: CurrentUser,
    *,
    status_filter: RequestStatusFilter = "ALL",
    page: int = 1,
    limit: int = 20,
) -> BackgroundVerificationListResponse:
    """The verifier's requests with referee contacts enriched from their accounts."""
    await _load_verifier(db, user)

    status = None if status_filter == "ALL" else BackgroundVerificationStatus(status_filter)
    requests, total = await repository.list_for_verifier(
        db, user.id, datetime.now(UTC), status=status, page=page, limit=limit
    )

    emails = sorted({c["email"] for r in requests for c in r.referee_contacts or [] if c.get("email")})
    users = await UserRepository.get_many_by_emails(db, emails)

    items = []
    for r in requests:
        item = BackgroundVerificationResponse.model_validate(r)
        item.referee_contacts = _enrich_contacts(r.referee_contacts, users)
        items.append(item)

    return BackgroundVerificationListResponse(
        requests=items,
        total=total,
        page=page,
        limit=limit,
        total_pages=_total_pages(total, limit),
    )


# ============================================
# Referee views
# ============================================


async def list_shared_requests(
    db: AsyncSession,
    user: CurrentUser,
) -> list[SharedRequestResponse]:
    """Submitted requests that list the caller as a referee, with their chat if any."""
    await _load_verifier(db, user)
    email = user.email.lower()

    results = []
    for request in await repository.list_shared_with(db, email, datetime.now(UTC)):
        contact = next((c for c in request.referee_contacts if c.get("email") == email), None)
        if contact is None:
            continue
        chat = await repository.get_chat_by_participants(db, request.id, request.verifier_id, user.id)
        results.append(
            SharedRequestResponse(
                id=request.id,
                student_id=request.student_id,
                student_name=request.student_name,
                student_email=request.student_email,
                student_institute=request.student_institute,
                verifier_id=request.verifier_id,
                verifier_name=request.verifier_name,
                verifier_email=request.verifier_email,
                verifier_institute=request.verifier_institute,
                referee=RefereeContactResponse(**contact),
                status=request.status,
                submitted_at=request.submitted_at,
                chat_id=chat.id if chat else None,
            )
        )
    return results


async def _open_chat(
    db: AsyncSession,
    request: BackgroundVerification,
    contact_id: UUID,
    contact_email: str,
) -> StartChatResponse:
    chat, created = await chat_manager.find_or_create_chat(
        db,
        bg_verification_id=request.id,
        requesting_verifier_id=request.verifier_id,
        requesting_verifier_email=request.verifier_email,
        shared_contact_id=contact_id,
        shared_contact_email=contact_email,
        student_id=request.student_id,
        student_email=request.student_email,
    )
    await db.commit()

    event = {"chat_id": str(chat.id), "request_id": str(request.id)}
    await publish_event(user_channel(request.verifier_id), "bg_chat_created", event)
    await publish_event(user_channel(contact_id), "bg_chat_created", event)

    return StartChatResponse(chat=ChatResponse.model_validate(chat), created=created)


def _listed_emails(request: BackgroundVerification) -> set[str]:
    return {c.get("email", "").lower() for c in request.referee_contacts or []}


async def start_chat_as_referee(
    db: AsyncSession,
    user: CurrentUser,
    request_id: UUID,
) -> StartChatResponse:
    """
    Open (or reopen) the chat with the requesting verifier as a listed referee.

    Raises:
        NotFoundError: Request not found or expired
        ForbiddenError: Caller is not a verifier or was not listed as a referee
    """
    await _load_verifier(db, user)
    request = await _load_owned_request(db, request_id, datetime.now(UTC))

    if user.email.lower() not in _listed_emails(request):
        raise ForbiddenError("This request was not shared with you.")

    return await _open_chat(db, request, user.id, user.email)


async def start_chat_as_requester(
    db: AsyncSession,
    user: CurrentUser,
    request_id: UUID,
    shared_contact_id: UUID,
) -> StartChatResponse:
    """
    Open (or reopen) a chat with one of the request's referees.

    Raises:
        NotFoundError: Request or referee account not found
        ForbiddenError: Caller did not create the request
        ValidationError: The account was not listed as a referee
    """
    request = await _load_owned_request(db, request_id, datetime.now(UTC))
    if request.verifier_id != user.id:
        raise ForbiddenError("Only the requesting verifier can start chats for this request.")

    contact = await UserRepository.get_by_id(db, shared_contact_id)
    if not contact:
        raise NotFoundError("Referee", shared_contact_id)
    if contact.email.lower() not in _listed_emails(request):
        raise ValidationError("This user was not listed as a referee in this request.")

    return await _open_chat(db, request, contact.id, contact.email)
