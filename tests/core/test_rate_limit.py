"""
Unit tests for the per-client request limiter.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import Request

from app.core import rate_limit as rate_limit_module
from app.core.rate_limit import RateLimitExceeded, check_rate_limit, client_ip_key, rate_limit


def make_request(host: str = "10.0.0.1", path: str = "/api/auth/login") -> Request:
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": path,
            "headers": [],
            "query_string": b"",
            "client": (host, 12345),
            "server": ("testserver", 80),
            "scheme": "http",
        }
    )


class TestCheckRateLimit:
    @pytest.mark.asyncio
    async def test_memory_limit_allows_up_to_limit(self):
        assert await check_rate_limit("k", limit=2, window_seconds=60)
        assert await check_rate_limit("k", limit=2, window_seconds=60)
        assert not await check_rate_limit("k", limit=2, window_seconds=60)

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        assert await check_rate_limit("a", limit=1, window_seconds=60)
        assert await check_rate_limit("b", limit=1, window_seconds=60)
        assert not await check_rate_limit("a", limit=1, window_seconds=60)

    @pytest.mark.asyncio
    async def test_idle_keys_are_evicted(self):
        with patch("app.core.rate_limit.time.time", return_value=1000.0):
            assert await check_rate_limit("idle", limit=1, window_seconds=10)
        assert "idle" in rate_limit_module._memory_store

        with patch("app.core.rate_limit.time.time", return_value=1011.0):
            assert await check_rate_limit("other", limit=1, window_seconds=10)

        assert "idle" not in rate_limit_module._memory_store
        assert "idle" not in rate_limit_module._memory_expires
        assert "other" in rate_limit_module._memory_store

    @pytest.mark.asyncio
    async def test_keys_inside_window_are_kept(self):
        with patch("app.core.rate_limit.time.time", return_value=1000.0):
            assert await check_rate_limit("busy", limit=1, window_seconds=10)
        with patch("app.core.rate_limit.time.time", return_value=1005.0):
            assert not await check_rate_limit("busy", limit=1, window_seconds=10)
            assert await check_rate_limit("other", limit=1, window_seconds=10)
        assert rate_limit_module._memory_store["busy"] == [1000.0]

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_memory(self):
        client = MagicMock()
        client.pipeline.side_effect = ConnectionError("redis gone")
        with patch("app.core.rate_limit.redis_state.redis_client", client):
            assert await check_rate_limit("k", limit=1, window_seconds=60)
            assert not await check_rate_limit("k", limit=1, window_seconds=60)

    @pytest.mark.asyncio
    async def test_redis_window_count_is_used(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, 5, 1, True])
        client = MagicMock()
        client.pipeline.return_value = pipe
        with patch("app.core.rate_limit.redis_state.redis_client", client):
            assert not await check_rate_limit("k", limit=5, window_seconds=60)
            pipe.execute.return_value = [0, 4, 1, True]
            assert await check_rate_limit("k", limit=5, window_seconds=60)


class TestRateLimitDecorator:
    def test_key_includes_client_and_path(self):
        assert client_ip_key(make_request("1.2.3.4", "/x")) == "rate_limit:1.2.3.4:/x"

    @pytest.mark.asyncio
    async def test_decorator_raises_429_past_limit(self):
        calls = []

        @rate_limit(limit=lambda: 1, window_seconds=lambda: 30)
        async def endpoint(request: Request):
            calls.append(request)
            return "ok"

        request = make_request()
        assert await endpoint(request=request) == "ok"
        with pytest.raises(RateLimitExceeded) as exc_info:
            await endpoint(request=request)
        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == "30"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_limits_are_per_client(self):
        @rate_limit(limit=1, window_seconds=60)
        async def endpoint(request: Request):
            return "ok"

        assert await endpoint(make_request("1.1.1.1")) == "ok"
        assert await endpoint(make_request("2.2.2.2")) == "ok"
