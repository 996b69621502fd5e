"""
Builders for detached model instances used across tests.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from app.core.auth import CurrentUser
from app.modules.background_verifications.models import (
    BackgroundVerification,
    BackgroundVerificationChat,
    BackgroundVerificationStatus,
)
from app.modules.claims.models import ItemType
from app.modules.users.models import User, UserRole
from app.modules.verifications.models import (
    InviteStatus,
    Verification,
    VerificationStatus,
    VerifierInvite,
)


def make_user(
    *,
    role: UserRole = UserRole.STUDENT,
    email: str | None = None,
    name: str = "Test User",
    institute: str | None = None,
    external_contact: bool = False,
) -> User:
    return User(
        id=uuid4(),
        name=name,
        email=email or f"{uuid4().hex[:8]}@example.com",
        password_hash="not-a-real-hash",
        role=role,
        institute=institute,
        is_active=True,
        email_verified=not external_contact,
        profile_setup_complete=False,
        external_contact=external_contact,
    )


def as_current_user(user: User) -> CurrentUser:
    """CurrentUser as the auth dependency would build it from the user's JWT."""
    return CurrentUser(id=user.id, email=user.email, role=user.role.value, name=user.name)


def make_verification(
    *,
    verifier_email: str = "prof@uni-a.edu",
    status: VerificationStatus = VerificationStatus.PENDING,
    item_type: ItemType = ItemType.EDUCATION,
    item_id: UUID | None = None,
) -> Verification:
    return Verification(
        id=uuid4(),
        item_id=item_id or uuid4(),
        item_type=item_type,
        verifier_email=verifier_email,
        status=status,
        expires_at=datetime.now(UTC) + timedelta(days=30),
    )


def make_invite(
    verification: Verification,
    *,
    email: str | None = None,
    status: InviteStatus = InviteStatus.PENDING,
    token_jti: str = "initial-jti",
    created_by: UUID | None = None,
) -> VerifierInvite:
    email = email or verification.verifier_email
    return VerifierInvite(
        id=uuid4(),
        verification_id=verification.id,
        email=email,
        email_lower=email.lower(),
        name="Prof. Ada",
        organization="Uni A",
        created_by_user_id=created_by or uuid4(),
        status=status,
        token_jti=token_jti,
        token_expires_at=datetime.now(UTC) + timedelta(hours=72),
        notify_count=1,
        complaint_flag=False,
        audit=[],
    )


def make_bg_request(
    student: User,
    verifier: User,
    *,
    status: BackgroundVerificationStatus = BackgroundVerificationStatus.PENDING,
    referees_requested: int = 2,
    referee_contacts: list[dict] | None = None,
    completed: bool = False,
) -> BackgroundVerification:
    now = datetime.now(UTC)
    return BackgroundVerification(
        id=uuid4(),
        student_id=student.id,
        student_name=student.name,
        student_email=student.email,
        student_institute=student.institute,
        verifier_id=verifier.id,
        verifier_name=verifier.name,
        verifier_email=verifier.email,
        verifier_institute=verifier.institute or "Uni A",
        referee_contacts_requested=referees_requested,
        referee_contacts=referee_contacts or [],
        status=status,
        completed=completed,
        requested_at=now,
        expires_at=now + timedelta(days=30),
    )


def make_chat(request: BackgroundVerification, contact: User) -> BackgroundVerificationChat:
    return BackgroundVerificationChat(
        id=uuid4(),
        bg_verification_id=request.id,
        requesting_verifier_id=request.verifier_id,
        requesting_verifier_email=request.verifier_email,
        shared_contact_id=contact.id,
        shared_contact_email=contact.email,
        student_id=request.student_id,
        student_email=request.student_email,
        is_active=True,
        created_at=datetime.now(UTC),
        messages=[],
    )
