"""
Background Verification Jobs

- bg_verifications_expire (hourly): delete requests past expires_at; their
  chats and messages go with them by cascade
"""

import logging
from datetime import UTC, datetime
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from app.core.database import async_session_maker
from app.core.scheduler import register_job
from app.modules.background_verifications import repository

logger = logging.getLogger(__name__)

JOB_ID_EXPIRE = "bg_verifications_expire"


async def expire_background_verifications() -> dict[str, Any]:
    """Delete expired background checks."""
    now = datetime.now(UTC)
    async with async_session_maker() as db:
        deleted = await repository.delete_expired(db, now)
        await db.commit()

    if deleted:
        logger.info(f"Deleted {deleted} expired background verification(s)")
    return {"deleted": deleted, "run_at": now.isoformat()}


def register_background_verification_jobs() -> None:
    register_job(
        job_id=JOB_ID_EXPIRE,
        func=expire_background_verifications,
        trigger=IntervalTrigger(hours=1),
    )
