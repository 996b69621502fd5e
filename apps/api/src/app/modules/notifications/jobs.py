"""
Notification Outbox Jobs

- notifications_dispatch_outbox (every minute): retry PENDING notifications
- notifications_purge_processed (daily): delete sent and failed rows after the retention period
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from app.core.database import async_session_maker
from app.core.scheduler import register_job
from app.modules.notifications import repository, service

logger = logging.getLogger(__name__)

PROCESSED_RETENTION_DAYS = 7

JOB_ID_DISPATCH_OUTBOX = "notifications_dispatch_outbox"
JOB_ID_PURGE_PROCESSED = "notifications_purge_processed"


async def dispatch_outbox() -> dict[str, Any]:
    """Send the oldest batch of pending notifications."""
    results = await service.dispatch()
    if results["processed"]:
        logger.info(
            f"Outbox dispatch: processed={results['processed']} "
            f"sent={results['sent']} failed={results['failed']}"
        )
    return results


async def purge_processed_notifications() -> dict[str, Any]:
    """Delete sent and failed notifications older than the retention period."""
    cutoff = datetime.now(UTC) - timedelta(days=PROCESSED_RETENTION_DAYS)
    async with async_session_maker() as db:
        deleted = await repository.purge_processed_before(db, cutoff)
        await db.commit()

    logger.info(f"Purged {deleted} processed notifications")
    return {"deleted": deleted}


def register_notification_jobs() -> None:
    register_job(
        job_id=JOB_ID_DISPATCH_OUTBOX,
        func=dispatch_outbox,
        trigger=IntervalTrigger(minutes=1),
    )
    register_job(
        job_id=JOB_ID_PURGE_PROCESSED,
        func=purge_processed_notifications,
        trigger=IntervalTrigger(days=1),
    )
