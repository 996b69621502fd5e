"""
Verifications Background Jobs

1. Expire PENDING verifications past their expires_at, freeing the item for a
   new verification cycle
2. Expire PENDING invites whose claim link has expired

Both jobs are single UPDATE statements, so they are idempotent and safe to
run concurrently with request traffic.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from app.core.database import async_session_maker
from app.core.scheduler import register_job
from app.modules.verifications import repository

logger = logging.getLogger(__name__)

JOB_ID_EXPIRE_VERIFICATIONS = "verifications_expire_pending"
JOB_ID_EXPIRE_INVITES = "verifier_invites_expire"


async def expire_pending_verifications() -> dict[str, Any]:
    """Flip expired PENDING verifications to EXPIRED."""
    now = datetime.now(UTC)
    async with async_session_maker() as db:
        expired = await repository.expire_all_stale_pending(db, now)
        await db.commit()

    if expired:
        logger.info(f"Expired {expired} pending verifications")
    return {"expired": expired, "run_at": now.isoformat()}


async def expire_stale_invites() -> dict[str, Any]:
    """Flip PENDING invites with expired claim links to EXPIRED."""
    now = datetime.now(UTC)
    async with async_session_maker() as db:
        expired = await repository.expire_stale_invites(db, now)
        await db.commit()

    if expired:
        logger.info(f"Expired {expired} verifier invites")
    return {"expired": expired, "run_at": now.isoformat()}


def register_verification_jobs() -> None:
    register_job(
        job_id=JOB_ID_EXPIRE_VERIFICATIONS,
        func=expire_pending_verifications,
        trigger=IntervalTrigger(hours=1),
    )
    register_job(
        job_id=JOB_ID_EXPIRE_INVITES,
        func=expire_stale_invites,
        trigger=IntervalTrigger(hours=1),
    )
