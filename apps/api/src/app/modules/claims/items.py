"""
Verifiable Item Dispatch

A closed set of claim item kinds that the decision processor can mark as
verified or rejected. Each variant knows its storage model and how to describe
itself; callers resolve a variant with `get_verifiable_item(item_type)`.

New kinds are added by writing a VerifiableItem subclass and registering it in
VERIFIABLE_ITEMS.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.modules.claims.models import Education, Experience, ItemType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationOutcome:
    """Who decided on an item, when, and what they said."""

    actor_email: str
    decided_at: datetime
    comment: str | None = None
    verifier_name: str | None = None
    verifier_organization: str | None = None


class VerifiableItem(ABC):
    """Base variant. Subclasses set `item_type` and `model` and describe the item."""

    item_type: ClassVar[ItemType]
    model: ClassVar[type[Education] | type[Experience]]

    async def load(self, db: AsyncSession, item_id: UUID) -> Any | None:
        return await db.get(self.model, item_id)

    @abstractmethod
    def title(self, item: Any) -> str: ...

    @abstractmethod
    def details(self, item: Any) -> dict[str, Any]:
        """Type-specific fields shown to the verifier."""

    async def mark_verified(
        self, db: AsyncSession, item_id: UUID, outcome: VerificationOutcome
    ) -> bool:
        """
        Mark the item verified.

        verifier_name/organization are only written when known so an earlier
        value is not blanked out.

        Returns:
            True if a row was updated
        """
        values: dict[str, Any] = {
            "verified": True,
            "verified_at": outcome.decided_at,
            "verified_by": outcome.actor_email,
            "verifier_comment": outcome.comment,
        }
        if outcome.verifier_name:
            values["verifier_name"] = outcome.verifier_name
        if outcome.verifier_organization:
            values["verifier_organization"] = outcome.verifier_organization

        result = await db.execute(
            update(self.model).where(self.model.id == item_id).values(**values)
        )
        return result.rowcount > 0

    async def mark_rejected(
        self, db: AsyncSession, item_id: UUID, outcome: VerificationOutcome
    ) -> bool:
        """Record who rejected the item and why, leaving `verified` untouched."""
        result = await db.execute(
            update(self.model)
            .where(self.model.id == item_id)
            .values(verified_by=outcome.actor_email, verifier_comment=outcome.comment)
        )
        return result.rowcount > 0


class EducationItem(VerifiableItem):
    item_type = ItemType.EDUCATION
    model = Education

    def title(self, item: Education) -> str:
        return f"{item.degree} - {item.institution}"

    def details(self, item: Education) -> dict[str, Any]:
        return {
            "institution": item.institution,
            "degree": item.degree,
            "field_of_study": item.field_of_study,
            "start_date": item.start_date.isoformat() if item.start_date else None,
            "end_date": item.end_date.isoformat() if item.end_date else None,
            "description": item.description,
        }


class ExperienceItem(VerifiableItem):
    item_type = ItemType.EXPERIENCE
    model = Experience

    def title(self, item: Experience) -> str:
        return f"{item.role} at {item.organization}"

    def details(self, item: Experience) -> dict[str, Any]:
        return {
            "organization": item.organization,
            "role": item.role,
            "start_date": item.start_date.isoformat() if item.start_date else None,
            "end_date": item.end_date.isoformat() if item.end_date else None,
            "description": item.description,
        }


VERIFIABLE_ITEMS: dict[ItemType, VerifiableItem] = {
    ItemType.EDUCATION: EducationItem(),
    ItemType.EXPERIENCE: ExperienceItem(),
}


def get_verifiable_item(item_type: ItemType) -> VerifiableItem:
    """
    Resolve the variant for an item type.

    Raises:
        ValidationError: If the type cannot be verified through this workflow
    """
    variant = VERIFIABLE_ITEMS.get(item_type)
    if variant is None:
        logger.warning(f"Verification requested for unsupported item type {item_type}")
        raise ValidationError(f"Items of type {item_type.value} cannot be verified by invitation.")
    return variant
