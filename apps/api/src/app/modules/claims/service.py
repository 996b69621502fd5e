"""
Claims Service

Create and edit education and experience items. Either operation can also ask
a platform verifier (an existing VERIFIER account at the student's institute)
to review the item, which starts a PENDING verification and emails them.

Starting the verification never fails the item write: when no eligible
verifier is found the item is saved and the response says why no
verification was started. External verifiers are reached through invites
instead.
"""

import logging
import uuid
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser
from app.core.config import settings
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.modules.claims.items import get_verifiable_item
from app.modules.claims.models import ItemType
from app.modules.claims.schemas import (
    ClaimItemResponse,
    VerificationRequestFields,
    VerificationSummary,
)
from app.modules.notifications import service as notifications
from app.modules.notifications.models import NotificationKind, OutboxMessage
from app.modules.users.models import User, UserRole
from app.modules.users.repository import UserRepository
from app.modules.verifications.models import Verification
from app.modules.verifications.service import create_or_get_pending_verification

logger = logging.getLogger(__name__)

# Fields that belong to the verification request, not to the item
REQUEST_FIELDS = {"request_verification", "verifier_email"}


def _item_fields(data: VerificationRequestFields, *, exclude_unset: bool) -> dict[str, Any]:
    fields = data.model_dump(exclude=REQUEST_FIELDS, exclude_unset=exclude_unset)
    return {k: v.strip() if isinstance(v, str) else v for k, v in fields.items()}


def _to_response(
    item_type: ItemType,
    item: Any,
    verification: VerificationSummary | None = None,
    note: str | None = None,
) -> ClaimItemResponse:
    variant = get_verifiable_item(item_type)
    return ClaimItemResponse(
        id=item.id,
        item_type=item_type,
        title=variant.title(item),
        details=variant.details(item),
        verified=item.verified,
        verified_at=item.verified_at,
        verified_by=item.verified_by,
        verifier_comment=item.verifier_comment,
        verification=verification,
        verification_note=note,
    )


async def _request_platform_verification(
    db: AsyncSession,
    actor: CurrentUser,
    item_type: ItemType,
    item: Any,
    verifier_email: str,
) -> tuple[VerificationSummary | None, str | None, OutboxMessage | None]:
    """
    Start (or reuse) the PENDING verification for an item with a platform verifier.

    Returns:
        Tuple of (verification summary, note explaining a skip, queued email)
    """
    verifier = await UserRepository.get_by_email(db, verifier_email)
    if verifier is None or verifier.role != UserRole.VERIFIER:
        logger.info(f"No platform verifier for {item_type.value} {item.id}; skipping verification")
        return None, "No verifier account exists for that email. Send an invite instead.", None

    student = await UserRepository.get_by_id(db, actor.id)
    if not _same_institute(student, verifier):
        logger.info(
            f"Verifier {verifier.id} is not at the institute of student {actor.id}; "
            f"skipping verification for {item_type.value} {item.id}"
        )
        return None, "The verifier must belong to your institute. Send an invite instead.", None

    try:
        verification, created = await create_or_get_pending_verification(
            db,
            item_id=item.id,
            item_type=item_type,
            verifier_email=verifier.email,
            verifier_name=verifier.name,
            verifier_organization=verifier.institute,
            actor_email=actor.email,
            metadata={"verifier_email": verifier.email, "item_type": item_type.value},
        )
    except ConflictError as e:
        logger.warning(f"Verification for {item_type.value} {item.id} not started: {e.message}")
        return None, e.message, None

    summary = VerificationSummary(
        id=verification.id,
        status=verification.status,
        verifier_email=verification.verifier_email,
        expires_at=verification.expires_at,
        created=created,
    )
    if not created:
        note = None
        if verification.verifier_email != verifier.email:
            note = "This item is already pending with another verifier."
        return summary, note, None

    message = await _enqueue_review_request(db, verification, verifier, student, item_type, item)
    return summary, None, message


def _same_institute(student: User | None, verifier: User) -> bool:
    return bool(student and student.institute and verifier.institute == student.institute)


async def _enqueue_review_request(
    db: AsyncSession,
    verification: Verification,
    verifier: User,
    student: User,
    item_type: ItemType,
    item: Any,
) -> OutboxMessage:
    return await notifications.enqueue(
        db,
        NotificationKind.VERIFICATION_REQUEST,
        {
            "to_email": verifier.email,
            "verifier_name": verifier.name,
            "student_name": student.name,
            "item_title": get_verifiable_item(item_type).title(item),
            "item_type": item_type.value,
            "review_url": f"{settings.frontend_url}/verifications/{verification.id}",
        },
    )


async def _finish(
    db: AsyncSession,
    actor: CurrentUser,
    item_type: ItemType,
    item: Any,
    data: VerificationRequestFields,
) -> ClaimItemResponse:
    """Optionally start a verification, then commit and send the queued email."""
    summary, note, message = None, None, None
    if data.wants_verification and not item.verified:
        summary, note, message = await _request_platform_verification(
            db, actor, item_type, item, data.verifier_email
        )
    elif data.request_verification and not data.verifier_email:
        note = "Provide verifier_email to request a verification."

    await db.commit()
    if message is not None:
        await notifications.dispatch_after_commit([message])

    return _to_response(item_type, item, summary, note)


async def create_item(
    db: AsyncSession,
    actor: CurrentUser,
    item_type: ItemType,
    data: VerificationRequestFields,
) -> ClaimItemResponse:
    """
    Create an education or experience item for the signed-in student.

    Raises:
        ValidationError: The item type cannot be created here
    """
    variant = get_verifiable_item(item_type)
    item = variant.model(
        id=uuid.uuid4(),
        user_id=actor.id,
        verified=False,
        **_item_fields(data, exclude_unset=False),
    )
    db.add(item)
    await db.flush()

    logger.info(f"User {actor.id} created {item_type.value} {item.id}")
    return await _finish(db, actor, item_type, item, data)


async def update_item(
    db: AsyncSession,
    actor: CurrentUser,
    item_type: ItemType,
    item_id: UUID,
    data: VerificationRequestFields,
) -> ClaimItemResponse:
    """
    Edit an item the student owns. Verified items are read-only.

    Raises:
        NotFoundError: Item does not exist
        ForbiddenError: Actor does not own the item
        ConflictError: Item is already verified
        ValidationError: Resulting dates are out of order
    """
    variant = get_verifiable_item(item_type)
    item = await variant.load(db, item_id)
    if item is None:
        raise NotFoundError(item_type.value.title(), item_id)
    if item.user_id != actor.id:
        logger.warning(f"User {actor.id} attempted to edit {item_type.value} {item_id} they do not own")
        raise ForbiddenError("You can only edit your own portfolio items.")
    if item.verified:
        raise ConflictError("Verified items cannot be edited.")

    columns = variant.model.__table__.columns
    for field, value in _item_fields(data, exclude_unset=True).items():
        if value is None and not columns[field].nullable:
            raise ValidationError(f"{field} cannot be cleared.")
        setattr(item, field, value)

    if item.start_date and item.end_date and item.end_date < item.start_date:
        await db.rollback()
        raise ValidationError("end_date must not be before start_date.")

    await db.flush()
    logger.info(f"User {actor.id} updated {item_type.value} {item.id}")
    return await _finish(db, actor, item_type, item, data)
