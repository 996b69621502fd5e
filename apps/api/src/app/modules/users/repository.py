"""
User Repository

Database operations for user management.
"""

import logging
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for user database operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        name: str,
        email: str,
        password_hash: str,
        role: UserRole,
        institute: str | None = None,
        email_verified: bool = False,
        external_contact: bool = False,
    ) -> User:
        """
        Create a new user record.

        The email is normalised to lowercase. The session is flushed but not
        committed so the caller controls the transaction.

        Returns:
            Created User instance
        """
        user = User(
            name=name,
            email=email.strip().lower(),
            password_hash=password_hash,
            role=role,
            institute=institute,
            email_verified=email_verified,
            external_contact=external_contact,
        )

        db.add(user)
        await db.flush()

        logger.info(f"Created user: {user.id} ({user.role.value}, external={external_contact})")
        return user

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: UUID) -> User | None:
        """Get a user by ID."""
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Get a user by email address (case-insensitive)."""
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_many_by_emails(db: AsyncSession, emails: list[str]) -> dict[str, User]:
        """Map lowercase email -> User for every email that has an account."""
        if not emails:
            return {}
        lowered = [e.lower() for e in emails]
        result = await db.execute(select(User).where(User.email.in_(lowered)))
        return {user.email: user for user in result.scalars().all()}

    @staticmethod
    async def email_exists(db: AsyncSession, email: str) -> bool:
        """Check if an email address is already registered."""
        user = await UserRepository.get_by_email(db, email)
        return user is not None

    @staticmethod
    async def promote_to_verifier(db: AsyncSession, user: User) -> User:
        """Elevate a user to the VERIFIER role if they are not one already."""
        if user.role != UserRole.VERIFIER:
            logger.info(f"Promoting user {user.id} to VERIFIER")
            user.role = UserRole.VERIFIER
            await db.flush()
        return user

    @staticmethod
    async def set_password(
        db: AsyncSession,
        user_id: UUID,
        password_hash: str,
    ) -> None:
        """Set a password, mark the email verified and clear the placeholder flag."""
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                password_hash=password_hash,
                email_verified=True,
                external_contact=False,
            )
        )

    @staticmethod
    async def search_students(
        db: AsyncSession,
        *,
        query: str | None = None,
        institute: str | None = None,
        exclude_institute: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[User], int]:
        """
        Search student accounts by name/email and institute.

        Args:
            query: Case-insensitive substring of name or email
            institute: Case-insensitive substring of institute
            exclude_institute: Institute to leave out (the searcher's own)
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (students on this page, total matching)
        """
        filters = [User.role == UserRole.STUDENT, User.is_active.is_(True)]
        if query:
            pattern = f"%{query}%"
            filters.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        if institute:
            filters.append(User.institute.ilike(f"%{institute}%"))
        if exclude_institute:
            filters.append(
                or_(User.institute.is_(None), func.lower(User.institute) != exclude_institute.lower())
            )

        total = await db.scalar(select(func.count()).select_from(User).where(*filters))
        result = await db.execute(
            select(User).where(*filters).order_by(User.name).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total or 0
