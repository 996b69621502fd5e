"""
Verifier Invite Flow

Email-based onboarding of an external verifier for one verification.

State machine:
    PENDING -> ACCEPTED   (claim)
    PENDING -> EXPIRED    (invite link expired, background job)
    any     -> REVOKED    (report-abuse, no prior-state check)
    ACCEPTED, REVOKED, EXPIRED, REJECTED are terminal.

Tokens:
- Create and resend mint a new invite-claim token and overwrite token_jti,
  so only the most recently emailed link works.
- Claim mints a short-lived action token (action_token_jti) that the
  decision processor and create-account accept.

Security considerations:
- Tokens are bound to the invited email; a token presented for a different
  identity is rejected
- Token material is never logged
- Email notifications go through the outbox and never roll back the invite
"""

import logging
import uuid
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CurrentUser
from app.core.config import settings
from app.core.exceptions import (
    AlreadyProcessedError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.core.security import hash_password
from app.modules.auth.service import build_session, create_access_token_for, to_user_response
from app.modules.auth.schemas import SessionResponse
from app.modules.claims.items import get_verifiable_item
from app.modules.notifications import service as notifications
from app.modules.notifications.models import NotificationKind
from app.modules.users.models import UserRole
from app.modules.users.repository import UserRepository
from app.modules.verifications import repository, tokens
from app.modules.verifications.models import (
    InviteStatus,
    Verification,
    VerificationStatus,
    VerifierInvite,
)
from app.modules.verifications.schemas import (
    InviteClaimResponse,
    InviteCreateRequest,
    InviteCreateResponse,
    InvitePreviewResponse,
    InviteResendResponse,
)
from app.modules.verifications.service import create_or_get_pending_verification

logger = logging.getLogger(__name__)

ABUSE_REASON = "Reported by recipient"


def _audit_entry(action: str, by: str | None, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "action": action,
        "by": by,
        "at": datetime.now(UTC).isoformat(),
        "meta": meta or {},
    }


def _append_audit(invite: VerifierInvite, entry: dict[str, Any]) -> list[dict[str, Any]]:
    # JSONB columns are not mutation-tracked, always assign a new list
    return [*(invite.audit or []), entry]


def _invite_url(invite_id: UUID, token: str) -> str:
    return f"{settings.frontend_url}/verifier-invite/{invite_id}?token={token}"


async def _load_item_context(db: AsyncSession, verification: Verification) -> tuple[Any, Any]:
    """Return (item, owner) for a verification; either may be None."""
    variant = get_verifiable_item(verification.item_type)
    item = await variant.load(db, verification.item_id)
    owner = await UserRepository.get_by_id(db, item.user_id) if item else None
    return item, owner


async def _enqueue_invite_email(
    db: AsyncSession,
    invite: VerifierInvite,
    verification: Verification,
    token: str,
):
    item, owner = await _load_item_context(db, verification)
    variant = get_verifiable_item(verification.item_type)
    return await notifications.enqueue(
        db,
        NotificationKind.VERIFIER_INVITE,
        {
            "to_email": invite.email,
            "verifier_name": invite.name,
            "student_name": owner.name if owner else "A TruePort user",
            "item_title": variant.title(item) if item else "a portfolio entry",
            "item_type": verification.item_type.value,
            "invite_url": _invite_url(invite.id, token),
            "expires_hours": settings.invite_ttl_hours,
            "message": invite.message,
        },
    )


async def _resolve_verification(
    db: AsyncSession,
    actor: CurrentUser,
    data: InviteCreateRequest,
) -> tuple[Verification, str]:
    """Find or create the verification the invite targets. Returns (verification, email_lower)."""
    if data.verification_id is not None:
        verification = await repository.get_by_id(db, data.verification_id)
        if not verification:
            raise NotFoundError("Verification", data.verification_id)

        variant = get_verifiable_item(verification.item_type)
        item = await variant.load(db, verification.item_id)
        if item is None:
            raise NotFoundError("Item", verification.item_id)
        if item.user_id != actor.id:
            raise ForbiddenError("You can only request verification of your own items.")

        if verification.status != VerificationStatus.PENDING:
            raise AlreadyProcessedError("This verification has already been processed.")

        email = (data.email or verification.verifier_email).strip().lower()
        if email != verification.verifier_email:
            raise ValidationError(
                "This verification is pending with a different verifier email."
            )
        return verification, email

    # email, item_type and item_id are guaranteed by the request schema
    email = str(data.email).strip().lower()
    variant = get_verifiable_item(data.item_type)
    item = await variant.load(db, data.item_id)
    if item is None:
        raise NotFoundError("Item", data.item_id)
    if item.user_id != actor.id:
        raise ForbiddenError("You can only request verification of your own items.")

    verification, created = await create_or_get_pending_verification(
        db,
        item_id=data.item_id,
        item_type=data.item_type,
        verifier_email=email,
        verifier_name=data.name,
        verifier_organization=data.organization,
        actor_email=actor.email,
        metadata={"source": "verifier_invite"},
    )

    if not created and verification.verifier_email != email:
        logger.warning(
            f"Invite rejected: verification {verification.id} already pending with another verifier"
        )
        raise ValidationError(
            "A pending verification for this item already targets a different verifier."
        )

    return verification, email


async def create_invite(
    db: AsyncSession,
    actor: CurrentUser,
    data: InviteCreateRequest,
) -> InviteCreateResponse:
    """
    Invite an external verifier to decide on a claim item.

    1. Resolve (or create) the PENDING verification for the item
    2. Reject if a PENDING invite already exists for (verification, email)
    3. Persist the invite with a fresh invite-claim token
    4. Queue the invitation email

    Raises:
        ValidationError: GITHUB_PROJECT items, or the item is pending with
            another verifier
        NotFoundError: Verification or item does not exist
        ForbiddenError: The actor does not own the item
        ConflictError: A PENDING invite already exists for this email
    """
    verification, email_lower = await _resolve_verification(db, actor, data)

    if await repository.get_pending_invite(db, verification.id, email_lower):
        raise ConflictError("An invite for this email is already pending.")

    invite_id = uuid.uuid4()
    issued = tokens.issue_invite_claim_token(invite_id, email_lower)
    now = datetime.now(UTC)

    invite = VerifierInvite(
        id=invite_id,
        verification_id=verification.id,
        email=str(data.email or email_lower).strip(),
        email_lower=email_lower,
        name=data.name,
        organization=data.organization,
        message=data.message,
        created_by_user_id=actor.id,
        status=InviteStatus.PENDING,
        token_jti=issued.jti,
        token_expires_at=issued.expires_at,
        last_sent_at=now,
        notify_count=1,
        audit=[_audit_entry("CREATED", actor.email)],
    )

    try:
        async with db.begin_nested():
            await repository.create_invite(db, invite)
    except IntegrityError:
        logger.warning(f"Concurrent duplicate invite for verification {verification.id}")
        raise ConflictError("An invite for this email is already pending.") from None

    verification.token = issued.jti
    if not verification.verifier_name and data.name:
        verification.verifier_name = data.name
    if not verification.verifier_organization and data.organization:
        verification.verifier_organization = data.organization

    message = await _enqueue_invite_email(db, invite, verification, issued.token)
    await db.commit()

    logger.info(f"Created verifier invite {invite.id} for verification {verification.id}")
    await notifications.dispatch_after_commit([message])

    return InviteCreateResponse(
        invite_id=invite.id,
        status=invite.status,
        expires_at=issued.expires_at,
        verification_id=verification.id,
    )


async def resend_invite(
    db: AsyncSession,
    invite_id: UUID,
    actor: CurrentUser,
) -> InviteResendResponse:
    """
    Re-send an invite with a new link.

    Rotates token_jti, so every previously emailed link stops working.

    Raises:
        NotFoundError: Invite does not exist
        ForbiddenError: Actor did not create the invite
        AlreadyProcessedError: Invite is no longer PENDING
    """
    invite = await repository.get_invite(db, invite_id)
    if not invite:
        raise NotFoundError("Invite", invite_id)

    if invite.created_by_user_id != actor.id:
        logger.warning(f"User {actor.id} attempted to resend invite {invite_id} they did not create")
        raise ForbiddenError("Only the creator of this invite can resend it.")

    if invite.status != InviteStatus.PENDING:
        raise AlreadyProcessedError("This invite is no longer pending.")

    verification = await repository.get_by_id(db, invite.verification_id)
    if not verification:
        raise NotFoundError("Verification", invite.verification_id)

    issued = tokens.issue_invite_claim_token(invite.id, invite.email_lower)
    invite.token_jti = issued.jti
    invite.token_expires_at = issued.expires_at
    invite.last_sent_at = datetime.now(UTC)
    invite.notify_count = (invite.notify_count or 0) + 1
    invite.audit = _append_audit(invite, _audit_entry("RESENT", actor.email))
    verification.token = issued.jti

    message = await _enqueue_invite_email(db, invite, verification, issued.token)
    await db.commit()

    logger.info(f"Resent verifier invite {invite.id} (send #{invite.notify_count})")
    await notifications.dispatch_after_commit([message])

    return InviteResendResponse(invite_id=invite.id, expires_at=issued.expires_at)


async def _load_invite_for_token(
    db: AsyncSession,
    claims: dict[str, Any],
    invite_id: UUID | None = None,
) -> VerifierInvite:
    if invite_id is not None:
        tokens.ensure_subject(claims, invite_id)
    subject = tokens.token_subject(claims)
    invite = await repository.get_invite(db, subject)
    if not invite:
        raise NotFoundError("Invite", subject)
    return invite


async def preview_invite(db: AsyncSession, token: str) -> InvitePreviewResponse:
    """
    Describe what an invite asks for without changing any state.

    Raises:
        TokenInvalidError / TokenExpiredError / TokenRevokedError
        NotFoundError: Invite does not exist
        AlreadyProcessedError: Invite is no longer PENDING
    """
    claims = tokens.decode_invite_token(token, {tokens.PURPOSE_INVITE_CLAIM})
    invite = await _load_invite_for_token(db, claims)
    tokens.ensure_current_jti(claims, invite.token_jti)

    if invite.status != InviteStatus.PENDING:
        raise AlreadyProcessedError("This invite is no longer pending.")

    verification = await repository.get_by_id(db, invite.verification_id)
    if not verification:
        raise NotFoundError("Verification", invite.verification_id)

    item, owner = await _load_item_context(db, verification)
    variant = get_verifiable_item(verification.item_type)

    return InvitePreviewResponse(
        invite_id=invite.id,
        email=invite.email,
        name=invite.name,
        organization=invite.organization,
        message=invite.message,
        status=invite.status,
        expires_at=invite.token_expires_at,
        verification_id=verification.id,
        item_type=verification.item_type,
        item_title=variant.title(item) if item else None,
        student_name=owner.name if owner else None,
    )


async def claim_invite(
    db: AsyncSession,
    invite_id: UUID,
    token: str,
) -> InviteClaimResponse:
    """
    Accept an invite and mint an action token.

    Checks, in order: token signature/expiry, purpose, subject, current jti,
    PENDING status, email binding. If an account exists for the invited
    email it is promoted to VERIFIER and a session token is returned too.

    Raises:
        TokenInvalidError / TokenExpiredError / TokenRevokedError
        NotFoundError: Invite does not exist
        AlreadyProcessedError: Invite is no longer PENDING
        ForbiddenError: Token email does not match the invite
        ConflictError: A concurrent claim won
    """
    claims = tokens.decode_invite_token(token, {tokens.PURPOSE_INVITE_CLAIM})
    invite = await _load_invite_for_token(db, claims, invite_id)
    tokens.ensure_current_jti(claims, invite.token_jti)

    if invite.status != InviteStatus.PENDING:
        raise AlreadyProcessedError("This invite has already been used or is no longer valid.")

    email = str(claims["email"]).lower()
    if email != invite.email_lower:
        logger.warning(f"Invite {invite.id} claim with mismatched email binding")
        raise ForbiddenError("This invite was sent to a different email address.")

    user = await UserRepository.get_by_email(db, email)
    if user:
        await UserRepository.promote_to_verifier(db, user)

    action = tokens.issue_action_token(invite.id, email)
    accepted = await repository.accept_invite(
        db,
        invite.id,
        expected_token_jti=invite.token_jti,
        used_at=datetime.now(UTC),
        used_by_user_id=user.id if user else None,
        action_token_jti=action.jti,
        action_token_expires_at=action.expires_at,
        audit=_append_audit(invite, _audit_entry("CLAIMED", email, {"has_account": bool(user)})),
    )
    if not accepted:
        await db.rollback()
        raise ConflictError("This invite was claimed concurrently.")

    await repository.update_verifier_details(
        db,
        invite.verification_id,
        verifier_name=invite.name,
        verifier_organization=invite.organization,
    )
    await db.commit()

    logger.info(f"Invite {invite.id} claimed (existing account: {bool(user)})")

    return InviteClaimResponse(
        has_account=user is not None,
        action_token=action.token,
        token=create_access_token_for(user) if user else None,
        user=to_user_response(user) if user else None,
        verification_id=invite.verification_id,
    )


async def create_account_from_invite(
    db: AsyncSession,
    invite_id: UUID,
    token: str,
    password: str,
    name: str | None = None,
) -> SessionResponse:
    """
    Create a VERIFIER account for the invited email.

    Accepts either the invite-claim token or the action token; each is
    checked against its own stored jti.

    Raises:
        TokenInvalidError / TokenExpiredError / TokenRevokedError
        NotFoundError: Invite does not exist
        AlreadyProcessedError: Invite was revoked or expired
        ForbiddenError: Token email does not match the invite
        ValidationError: An account already exists for this email
    """
    claims = tokens.decode_invite_token(
        token, {tokens.PURPOSE_INVITE_CLAIM, tokens.PURPOSE_VERIFICATION_ACTION}
    )
    invite = await _load_invite_for_token(db, claims, invite_id)

    if claims["purpose"] == tokens.PURPOSE_VERIFICATION_ACTION:
        tokens.ensure_current_jti(claims, invite.action_token_jti)
    else:
        tokens.ensure_current_jti(claims, invite.token_jti)

    if invite.status not in (InviteStatus.PENDING, InviteStatus.ACCEPTED):
        raise AlreadyProcessedError("This invite is no longer valid.")

    email = str(claims["email"]).lower()
    if email != invite.email_lower:
        raise ForbiddenError("This invite was sent to a different email address.")

    if await UserRepository.email_exists(db, email):
        raise ValidationError("An account with this email already exists. Please log in instead.")

    display_name = (name or invite.name or email.split("@")[0]).strip()

    try:
        async with db.begin_nested():
            user = await UserRepository.create(
                db,
                name=display_name,
                email=email,
                password_hash=hash_password(password),
                role=UserRole.VERIFIER,
                institute=invite.organization,
                email_verified=True,
            )
    except IntegrityError:
        raise ValidationError(
            "An account with this email already exists. Please log in instead."
        ) from None

    invite.used_by_user_id = user.id
    if invite.used_at is None:
        invite.used_at = datetime.now(UTC)
    invite.audit = _append_audit(invite, _audit_entry("ACCOUNT_CREATED", email))
    await db.commit()

    logger.info(f"Created verifier account {user.id} from invite {invite.id}")
    return build_session(user)


async def report_abuse(
    db: AsyncSession,
    invite_id: UUID,
    token: str | None = None,
) -> None:
    """
    Revoke an invite at the recipient's request.

    Forces REVOKED from any status. When a token is supplied it must belong
    to this invite.
    """
    reporter: str | None = None
    if token:
        claims = tokens.decode_invite_token(
            token, {tokens.PURPOSE_INVITE_CLAIM, tokens.PURPOSE_VERIFICATION_ACTION}
        )
        tokens.ensure_subject(claims, invite_id)
        reporter = str(claims["email"]).lower()

    invite = await repository.get_invite(db, invite_id)
    if not invite:
        raise NotFoundError("Invite", invite_id)

    previous = invite.status
    invite.status = InviteStatus.REVOKED
    invite.status_reason = ABUSE_REASON
    invite.complaint_flag = True
    invite.audit = _append_audit(
        invite, _audit_entry("REPORTED_ABUSE", reporter, {"previous_status": previous.value})
    )
    await db.commit()

    logger.warning(f"Invite {invite.id} revoked after abuse report (was {previous.value})")
