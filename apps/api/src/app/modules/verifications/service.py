"""
Verification Record Manager

Owns the lifecycle of a verification cycle for one claim item and guarantees
that at most one PENDING, unexpired cycle exists per item.

The guarantee is enforced by the `ix_verifications_unique_pending_item`
partial unique index. Expired PENDING rows are flipped to EXPIRED before a
new cycle is inserted so they no longer occupy the index. Two concurrent
callers may both try to insert; the loser catches the IntegrityError and
returns the winner's row.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ConflictError
from app.modules.claims.models import ItemType
from app.modules.verifications import repository
from app.modules.verifications.models import Verification, VerificationAction

logger = logging.getLogger(__name__)


async def create_or_get_pending_verification(
    db: AsyncSession,
    *,
    item_id: UUID,
    item_type: ItemType,
    verifier_email: str,
    verifier_name: str | None = None,
    verifier_organization: str | None = None,
    actor_email: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> tuple[Verification, bool]:
    """
    Return the item's active PENDING verification, creating one if needed.

    Idempotent: calling it again while a cycle is pending returns that cycle
    unchanged, whatever verifier details are passed.

    Args:
        db: Database session (flushed, not committed)
        item_id: Claim item ID
        item_type: Claim item type
        verifier_email: Designated verifier (normalised to lowercase)
        verifier_name: Optional verifier display name
        verifier_organization: Optional verifier organization
        actor_email: When given, a CREATED audit entry is written
        metadata: Extra data stored on the audit entry

    Returns:
        Tuple of (verification, created)

    Raises:
        ConflictError: If the insert collided but no winner could be re-read
    """
    now = datetime.now(UTC)
    email = verifier_email.strip().lower()

    existing = await repository.get_active_pending(db, item_id, item_type, now)
    if existing:
        logger.debug(f"Reusing pending verification {existing.id} for {item_type.value} {item_id}")
        return existing, False

    expired = await repository.expire_stale_pending_for_item(db, item_id, item_type, now)
    if expired:
        logger.info(f"Expired stale pending verification for {item_type.value} {item_id}")

    try:
        async with db.begin_nested():
            verification = await repository.create(
                db,
                item_id=item_id,
                item_type=item_type,
                verifier_email=email,
                verifier_name=verifier_name,
                verifier_organization=verifier_organization,
                expires_at=now + timedelta(days=settings.verification_ttl_days),
            )
    except IntegrityError:
        logger.info(
            f"Concurrent pending verification insert for {item_type.value} {item_id}, "
            "returning existing record"
        )
        winner = await repository.get_active_pending(db, item_id, item_type, now)
        if winner is None:
            raise ConflictError(
                "A verification for this item is being created. Please try again."
            ) from None
        return winner, False

    logger.info(f"Created verification {verification.id} for {item_type.value} {item_id}")

    if actor_email:
        await _log_created(db, verification, actor_email, metadata)

    return verification, True


async def _log_created(
    db: AsyncSession,
    verification: Verification,
    actor_email: str,
    metadata: dict[str, Any] | None,
) -> None:
    """Write the CREATED audit entry. Failures are logged and swallowed."""
    try:
        async with db.begin_nested():
            await repository.add_log(
                db,
                verification_id=verification.id,
                action=VerificationAction.CREATED,
                actor_email=actor_email.lower(),
                meta=metadata,
            )
    except Exception as e:
        logger.error(f"Failed to write CREATED log for verification {verification.id}: {e}")
