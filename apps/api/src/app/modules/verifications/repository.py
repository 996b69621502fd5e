"""
Verifications Repository

Database operations for verifications, their audit log, and verifier invites.

Design Principles:
- Only data access here, no business rules
- Functions flush but never commit; services own the transaction
- Every status transition is a conditional UPDATE on the expected current
  status (compare-and-swap) and reports whether it won
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.claims.models import ItemType

from .models import (
    InviteStatus,
    Verification,
    VerificationAction,
    VerificationLog,
    VerificationStatus,
    VerifierInvite,
)

# ============================================
# Verification
# ============================================


async def get_by_id(db: AsyncSession, id: UUID) -> Verification | None:
    """Get verification by ID."""
    return await db.get(Verification, id)


async def get_active_pending(
    db: AsyncSession,
    item_id: UUID,
    item_type: ItemType,
    now: datetime,
) -> Verification | None:
    """Get the PENDING, unexpired verification for an item, if any."""
    result = await db.execute(
        select(Verification).where(
            Verification.item_id == item_id,
            Verification.item_type == item_type,
            Verification.status == VerificationStatus.PENDING,
            Verification.expires_at > now,
        )
    )
    return result.scalar_one_or_none()


async def expire_stale_pending_for_item(
    db: AsyncSession,
    item_id: UUID,
    item_type: ItemType,
    now: datetime,
) -> int:
    """Flip an item's expired PENDING verification to EXPIRED. Returns rows changed."""
    result = await db.execute(
        update(Verification)
        .where(
            Verification.item_id == item_id,
            Verification.item_type == item_type,
            Verification.status == VerificationStatus.PENDING,
            Verification.expires_at <= now,
        )
        .values(status=VerificationStatus.EXPIRED)
    )
    return result.rowcount


async def expire_all_stale_pending(db: AsyncSession, now: datetime) -> int:
    """Flip every expired PENDING verification to EXPIRED. Returns rows changed."""
    result = await db.execute(
        update(Verification)
        .where(
            Verification.status == VerificationStatus.PENDING,
            Verification.expires_at <= now,
        )
        .values(status=VerificationStatus.EXPIRED)
    )
    return result.rowcount


async def create(
    db: AsyncSession,
    *,
    item_id: UUID,
    item_type: ItemType,
    verifier_email: str,
    verifier_name: str | None,
    verifier_organization: str | None,
    expires_at: datetime,
) -> Verification:
    """Insert a new PENDING verification. Raises IntegrityError if one is already pending."""
    verification = Verification(
        item_id=item_id,
        item_type=item_type,
        verifier_email=verifier_email,
        verifier_name=verifier_name,
        verifier_organization=verifier_organization,
        status=VerificationStatus.PENDING,
        expires_at=expires_at,
    )
    db.add(verification)
    await db.flush()
    return verification


async def apply_decision(
    db: AsyncSession,
    id: UUID,
    *,
    status: VerificationStatus,
    decided_by: str,
    decided_at: datetime,
    comment: str | None,
) -> bool:
    """
    Move a PENDING verification to a terminal status.

    Returns:
        True if this call performed the transition, False if the
        verification was no longer PENDING
    """
    result = await db.execute(
        update(Verification)
        .where(
            Verification.id == id,
            Verification.status == VerificationStatus.PENDING,
        )
        .values(
            status=status,
            decided_by=decided_by,
            decided_at=decided_at,
            comment=comment,
        )
    )
    return result.rowcount == 1


async def update_verifier_details(
    db: AsyncSession,
    id: UUID,
    *,
    verifier_name: str | None,
    verifier_organization: str | None,
) -> None:
    """Store the verifier's name/organization, skipping values that are not provided."""
    values: dict[str, Any] = {}
    if verifier_name:
        values["verifier_name"] = verifier_name
    if verifier_organization:
        values["verifier_organization"] = verifier_organization
    if not values:
        return
    await db.execute(update(Verification).where(Verification.id == id).values(**values))


# ============================================
# VerificationLog
# ============================================


async def add_log(
    db: AsyncSession,
    *,
    verification_id: UUID,
    action: VerificationAction,
    actor_email: str | None,
    meta: dict[str, Any] | None = None,
) -> VerificationLog:
    """Append an audit entry."""
    entry = VerificationLog(
        verification_id=verification_id,
        action=action,
        actor_email=actor_email,
        meta=meta,
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_logs(db: AsyncSession, verification_id: UUID) -> list[VerificationLog]:
    """Audit entries for a verification, oldest first."""
    result = await db.execute(
        select(VerificationLog)
        .where(VerificationLog.verification_id == verification_id)
        .order_by(VerificationLog.created_at)
    )
    return list(result.scalars().all())


# ============================================
# VerifierInvite
# ============================================


async def get_invite(db: AsyncSession, id: UUID) -> VerifierInvite | None:
    """Get invite by ID."""
    return await db.get(VerifierInvite, id)


async def get_pending_invite(
    db: AsyncSession,
    verification_id: UUID,
    email_lower: str,
) -> VerifierInvite | None:
    """Get the PENDING invite for (verification, email), if any."""
    result = await db.execute(
        select(VerifierInvite).where(
            VerifierInvite.verification_id == verification_id,
            VerifierInvite.email_lower == email_lower,
            VerifierInvite.status == InviteStatus.PENDING,
        )
    )
    return result.scalar_one_or_none()


async def create_invite(db: AsyncSession, invite: VerifierInvite) -> VerifierInvite:
    """Insert an invite. Raises IntegrityError if a PENDING one already exists."""
    db.add(invite)
    await db.flush()
    return invite


async def accept_invite(
    db: AsyncSession,
    id: UUID,
    *,
    expected_token_jti: str,
    used_at: datetime,
    used_by_user_id: UUID | None,
    action_token_jti: str,
    action_token_expires_at: datetime,
    audit: list[dict[str, Any]],
) -> bool:
    """
    Claim a PENDING invite whose current token is `expected_token_jti`.

    Returns:
        True if this call accepted the invite
    """
    result = await db.execute(
        update(VerifierInvite)
        .where(
            VerifierInvite.id == id,
            VerifierInvite.status == InviteStatus.PENDING,
            VerifierInvite.token_jti == expected_token_jti,
        )
        .values(
            status=InviteStatus.ACCEPTED,
            used_at=used_at,
            used_by_user_id=used_by_user_id,
            action_token_jti=action_token_jti,
            action_token_expires_at=action_token_expires_at,
            audit=audit,
        )
    )
    return result.rowcount == 1


async def expire_stale_invites(db: AsyncSession, now: datetime) -> int:
    """Mark PENDING invites whose claim token has expired as EXPIRED."""
    result = await db.execute(
        update(VerifierInvite)
        .where(
            VerifierInvite.status == InviteStatus.PENDING,
            VerifierInvite.token_expires_at <= now,
        )
        .values(status=InviteStatus.EXPIRED, status_reason="Invite link expired")
    )
    return result.rowcount
