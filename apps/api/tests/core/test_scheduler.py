"""
Unit tests for the job registry.
"""

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from app.core import scheduler


@pytest.fixture(autouse=True)
def isolated_registry():
    saved = dict(scheduler._job_registry)
    scheduler._job_registry.clear()
    yield
    scheduler._job_registry.clear()
    scheduler._job_registry.update(saved)


class TestTriggerJobManually:
    """Tests for trigger_job_manually."""

    @pytest.mark.asyncio
    async def test_success_returns_result(self):
        async def expire_things():
            return {"expired": 2}

        scheduler.register_job("expire_things", expire_things, IntervalTrigger(hours=1))

        result = await scheduler.trigger_job_manually("expire_things")

        assert result["status"] == "success"
        assert result["result"] == {"expired": 2}

    @pytest.mark.asyncio
    async def test_failure_is_reported_not_raised(self):
        async def broken():
            raise RuntimeError("database unavailable")

        scheduler.register_job("broken", broken, IntervalTrigger(hours=1))

        result = await scheduler.trigger_job_manually("broken")

        assert result["status"] == "error"
        assert result["error"] == "database unavailable"

    @pytest.mark.asyncio
    async def test_unknown_job_raises(self):
        with pytest.raises(ValueError):
            await scheduler.trigger_job_manually("does_not_exist")


class TestListRegisteredJobs:
    def test_lists_without_running_scheduler(self):
        async def noop():
            return None

        scheduler.register_job("noop", noop, IntervalTrigger(minutes=5))

        assert scheduler.list_registered_jobs() == [{"job_id": "noop", "registered": True}]
        assert scheduler.pause_job("noop") is False
