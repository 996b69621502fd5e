"""
Unit tests for rate limiting.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core import rate_limit as rate_limit_module
from app.core.rate_limit import check_rate_limit


@pytest.fixture(autouse=True)
def clear_memory_store():
    rate_limit_module._memory_store.clear()
    yield
    rate_limit_module._memory_store.clear()


class TestCheckRateLimit:
    """Tests for check_rate_limit."""

    @pytest.mark.asyncio
    async def test_memory_fallback_blocks_after_limit(self):
        """Without Redis the in-memory window enforces the limit."""
        with patch("app.core.rate_limit.redis_module.redis_client", None):
            results = [await check_rate_limit("invite_resend:user_1", 3, 60) for _ in range(4)]

        assert results == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_memory_keys_are_independent(self):
        with patch("app.core.rate_limit.redis_module.redis_client", None):
            assert await check_rate_limit("a", 1, 60) is True
            assert await check_rate_limit("a", 1, 60) is False
            assert await check_rate_limit("b", 1, 60) is True

    @pytest.mark.asyncio
    async def test_redis_window_used_when_connected(self, mock_redis):
        with patch("app.core.rate_limit.redis_module.redis_client", mock_redis):
            allowed = await check_rate_limit("claim:1.2.3.4", 5, 60)

        assert allowed is True
        mock_redis.pipeline.return_value.zadd.assert_called_once()

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_memory(self):
        broken = MagicMock()
        pipe = MagicMock()
        pipe.execute = AsyncMock(side_effect=ConnectionError("redis down"))
        broken.pipeline.return_value = pipe

        with patch("app.core.rate_limit.redis_module.redis_client", broken):
            allowed = await check_rate_limit("claim:1.2.3.4", 1, 60)

        assert allowed is True
        assert "claim:1.2.3.4" in rate_limit_module._memory_store
