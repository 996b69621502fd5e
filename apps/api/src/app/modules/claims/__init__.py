"""
Claims module - portfolio items that can be verified.

API Endpoints:
- POST /claims/education, PATCH /claims/education/{id}
- POST /claims/experience, PATCH /claims/experience/{id}
"""

from app.modules.claims.items import VerifiableItem, VerificationOutcome, get_verifiable_item
from app.modules.claims.models import Education, Experience, ItemType

__all__ = [
    "Education",
    "Experience",
    "ItemType",
    "VerifiableItem",
    "VerificationOutcome",
    "get_verifiable_item",
]
