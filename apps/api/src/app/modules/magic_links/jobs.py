"""
Magic Links Background Jobs

- magic_links_cleanup (hourly): delete expired tokens
"""

import logging
from datetime import UTC, datetime
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from app.core.database import async_session_maker
from app.core.scheduler import register_job
from app.modules.magic_links import repository

logger = logging.getLogger(__name__)

JOB_ID_CLEANUP = "magic_links_cleanup"


async def cleanup_expired_magic_links() -> dict[str, Any]:
    """Delete magic links past their expiry, used or not."""
    now = datetime.now(UTC)
    async with async_session_maker() as db:
        deleted = await repository.delete_expired(db, now)
        await db.commit()

    logger.info(f"Deleted {deleted} expired magic links")
    return {"deleted": deleted, "run_at": now.isoformat()}


def register_magic_link_jobs() -> None:
    register_job(
        job_id=JOB_ID_CLEANUP,
        func=cleanup_expired_magic_links,
        trigger=IntervalTrigger(hours=1),
    )
