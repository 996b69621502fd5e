"""
Verifications Module

Handles the claim verification workflow:
1. One PENDING verification cycle per claim item (storage-enforced)
2. Verifier invites: create, resend, preview, claim, create-account, report-abuse
3. Decisions: APPROVE/DENY by the designated verifier, propagated to the item

API Endpoints:
- POST /verifier-invites, /verifier-invites/preview
- POST /verifier-invites/{id}/resend|claim|create-account|report-abuse
- POST /verifications/{id}/decision, /verifications/{id}/details

Security Features:
- Purpose-bound signed tokens with jti rotation (one live link per invite)
- Short-lived action tokens for the decision step
- Email binding between token and invite
- Compare-and-swap status transitions

Background Jobs (via APScheduler):
- verifications_expire_pending: hourly
- verifier_invites_expire: hourly
"""

from .invite_router import router as invite_router
from .jobs import register_verification_jobs
from .router import router

__all__ = ["router", "invite_router", "register_verification_jobs"]
