"""
Decision Processor

Applies APPROVE/DENY to a verification and propagates the result to the
claim item.

Ordering:
1. Resolve the actor (action token or verifier session)
2. Guard: actor email must equal the verification's verifier email
3. Guard: verification must still be PENDING
4. Commit status change + audit log entry (conditional UPDATE)
5. Best-effort: mark the claim item verified/rejected
6. Best-effort: queue the decision email for the item owner

Steps 5 and 6 run after the commit in step 4. Their failures are logged and
never undo the decision.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser
from app.core.exceptions import (
    AlreadyProcessedError,
    ForbiddenError,
    NotFoundError,
    TokenExpiredError,
)
from app.modules.claims.items import VerificationOutcome, get_verifiable_item
from app.modules.notifications import service as notifications
from app.modules.notifications.models import NotificationKind
from app.modules.users.repository import UserRepository
from app.modules.verifications import repository, tokens
from app.modules.verifications.models import (
    Decision,
    InviteStatus,
    Verification,
    VerificationAction,
    VerificationStatus,
    VerifierInvite,
)
from app.modules.verifications.schemas import (
    DecisionResponse,
    StudentSummary,
    VerificationDetailsResponse,
    VerificationLogResponse,
)

logger = logging.getLogger(__name__)

DECISION_TRANSITIONS: dict[Decision, tuple[VerificationStatus, VerificationAction]] = {
    Decision.APPROVE: (VerificationStatus.APPROVED, VerificationAction.APPROVED),
    Decision.DENY: (VerificationStatus.REJECTED, VerificationAction.REJECTED),
}


@dataclass
class DecisionActor:
    """Whoever is deciding, with the invite they came through when token-based."""

    email: str
    user_id: UUID | None = None
    invite: VerifierInvite | None = None


async def resolve_actor_from_action_token(db: AsyncSession, token: str) -> DecisionActor:
    """
    Validate a verification-action token.

    Checks, in order: signature/expiry, purpose, invite exists, current
    action jti, stored action expiry, invite ACCEPTED.

    Raises:
        TokenInvalidError / TokenExpiredError / TokenRevokedError
        NotFoundError: Invite does not exist
        ForbiddenError: Invite is not ACCEPTED
    """
    claims = tokens.decode_invite_token(token, {tokens.PURPOSE_VERIFICATION_ACTION})
    invite_id = tokens.token_subject(claims)

    invite = await repository.get_invite(db, invite_id)
    if not invite:
        raise NotFoundError("Invite", invite_id)

    tokens.ensure_current_jti(claims, invite.action_token_jti)

    if invite.action_token_expires_at and invite.action_token_expires_at <= datetime.now(UTC):
        raise TokenExpiredError()

    if invite.status != InviteStatus.ACCEPTED:
        raise ForbiddenError("This invite is not active.")

    return DecisionActor(
        email=str(claims["email"]).lower(),
        user_id=invite.used_by_user_id,
        invite=invite,
    )


def actor_from_session(user: CurrentUser) -> DecisionActor:
    """Build an actor from an authenticated session. Only verifiers may decide."""
    if not user.is_verifier:
        raise ForbiddenError("Only verifiers can decide on verifications.")
    return DecisionActor(email=user.email.lower(), user_id=user.id)


async def _load_for_actor(
    db: AsyncSession,
    verification_id: UUID,
    actor: DecisionActor,
) -> Verification:
    verification = await repository.get_by_id(db, verification_id)
    if not verification:
        raise NotFoundError("Verification", verification_id)

    if actor.invite is not None and actor.invite.verification_id != verification.id:
        logger.warning(f"Action token for another verification used on {verification_id}")
        raise ForbiddenError("This link is not valid for this verification.")

    if verification.verifier_email.lower() != actor.email:
        logger.warning(f"Decision attempt on {verification_id} by non-designated verifier")
        raise ForbiddenError("You are not the designated verifier for this item.")

    return verification


async def process_decision(
    db: AsyncSession,
    verification_id: UUID,
    decision: Decision,
    comment: str | None,
    actor: DecisionActor,
) -> DecisionResponse:
    """
    Apply a verifier's decision.

    Raises:
        NotFoundError: Verification does not exist
        ForbiddenError: Actor is not the designated verifier
        AlreadyProcessedError: Verification is not PENDING (including a
            concurrent decision that committed first)
    """
    verification = await _load_for_actor(db, verification_id, actor)

    if verification.status != VerificationStatus.PENDING:
        raise AlreadyProcessedError("This verification has already been processed.")

    new_status, log_action = DECISION_TRANSITIONS[decision]
    decided_at = datetime.now(UTC)
    comment = comment.strip() if comment else None

    applied = await repository.apply_decision(
        db,
        verification.id,
        status=new_status,
        decided_by=actor.email,
        decided_at=decided_at,
        comment=comment,
    )
    if not applied:
        await db.rollback()
        raise AlreadyProcessedError("This verification has already been processed.")

    await repository.add_log(
        db,
        verification_id=verification.id,
        action=log_action,
        actor_email=actor.email,
        meta={"comment": comment},
    )
    await db.commit()

    logger.info(f"Verification {verification.id} {new_status.value}")

    outcome = VerificationOutcome(
        actor_email=actor.email,
        decided_at=decided_at,
        comment=comment,
        verifier_name=(actor.invite.name if actor.invite else None) or verification.verifier_name,
        verifier_organization=(actor.invite.organization if actor.invite else None)
        or verification.verifier_organization,
    )
    await _apply_to_item(db, verification, decision, outcome)
    await _notify_owner(db, verification, new_status, outcome)

    return DecisionResponse(ok=True, verification_id=verification.id, status=new_status)


async def _apply_to_item(
    db: AsyncSession,
    verification: Verification,
    decision: Decision,
    outcome: VerificationOutcome,
) -> None:
    """Mark the claim item. Failures are logged, the decision stands."""
    try:
        variant = get_verifiable_item(verification.item_type)
        if decision == Decision.APPROVE:
            updated = await variant.mark_verified(db, verification.item_id, outcome)
        else:
            updated = await variant.mark_rejected(db, verification.item_id, outcome)
        await db.commit()

        if not updated:
            logger.warning(
                f"Claim item {verification.item_id} missing while applying decision "
                f"for verification {verification.id}"
            )
    except Exception as e:
        await db.rollback()
        logger.error(f"Failed to update item for verification {verification.id}: {e}")


async def _notify_owner(
    db: AsyncSession,
    verification: Verification,
    status: VerificationStatus,
    outcome: VerificationOutcome,
) -> None:
    """Queue and send the decision email. Failures are logged, the decision stands."""
    try:
        variant = get_verifiable_item(verification.item_type)
        item = await variant.load(db, verification.item_id)
        owner = await UserRepository.get_by_id(db, item.user_id) if item else None
        if owner is None:
            logger.warning(f"No owner found to notify for verification {verification.id}")
            return

        message = await notifications.enqueue(
            db,
            NotificationKind.VERIFICATION_DECISION,
            {
                "to_email": owner.email,
                "student_name": owner.name,
                "item_title": variant.title(item),
                "item_type": verification.item_type.value,
                "status": status.value,
                "comment": outcome.comment,
                "verifier_name": outcome.verifier_name,
            },
        )
        await db.commit()
        await notifications.dispatch_after_commit([message])
    except Exception as e:
        await db.rollback()
        logger.error(f"Failed to queue decision email for verification {verification.id}: {e}")


async def get_verification_details(
    db: AsyncSession,
    verification_id: UUID,
    actor: DecisionActor,
) -> VerificationDetailsResponse:
    """
    Full item, owner and audit trail for the designated verifier.

    Raises:
        NotFoundError / ForbiddenError as for process_decision
    """
    verification = await _load_for_actor(db, verification_id, actor)

    variant = get_verifiable_item(verification.item_type)
    item = await variant.load(db, verification.item_id)
    owner = await UserRepository.get_by_id(db, item.user_id) if item else None
    logs = await repository.list_logs(db, verification.id)

    return VerificationDetailsResponse(
        verification_id=verification.id,
        status=verification.status,
        item_type=verification.item_type,
        item_id=verification.item_id,
        item_title=variant.title(item) if item else None,
        item=variant.details(item) if item else None,
        verifier_email=verification.verifier_email,
        verifier_name=verification.verifier_name,
        verifier_organization=verification.verifier_organization,
        expires_at=verification.expires_at,
        student=(
            StudentSummary(
                id=owner.id, name=owner.name, email=owner.email, institute=owner.institute
            )
            if owner
            else None
        ),
        logs=[VerificationLogResponse.model_validate(log) for log in logs],
    )
