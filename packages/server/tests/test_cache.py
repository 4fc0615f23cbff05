"""
Tests for the best-effort summary cache and its connection state.
"""

from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.core.cache import ConnectionState, SummaryCache, summary_key
from event_ingestion_shared.schemas.common import SummaryWindow


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_summary_key_format():
    assert summary_key("acc_1", SummaryWindow.LAST_24H) == "summary:acc_1:last_24h"
    assert summary_key("acc_1", "last_7d") == "summary:acc_1:last_7d"


@pytest.mark.asyncio
async def test_connect_marks_available(fake_redis, metrics):
    cache = SummaryCache(fake_redis, metrics=metrics)
    assert cache.state is ConnectionState.CONNECTING

    state = await cache.connect()

    assert state is ConnectionState.AVAILABLE
    assert cache.available
    assert metrics.get("cache_available") == 1


@pytest.mark.asyncio
async def test_get_and_set(summary_cache, fake_redis, redis_store, metrics):
    assert await summary_cache.get_summary("acc_1", SummaryWindow.LAST_24H) is None

    await summary_cache.set_summary("acc_1", SummaryWindow.LAST_24H, '{"x": 1}')

    fake_redis.set.assert_awaited_with("summary:acc_1:last_24h", '{"x": 1}', ex=30)
    assert await summary_cache.get_summary("acc_1", SummaryWindow.LAST_24H) == '{"x": 1}'
    assert metrics.get("cache_misses_total") == 1
    assert metrics.get("cache_hits_total") == 1


@pytest.mark.asyncio
async def test_explicit_ttl_overrides_default(summary_cache, fake_redis):
    await summary_cache.set_summary("acc_1", "last_7d", "{}", ttl=5)
    fake_redis.set.assert_awaited_with("summary:acc_1:last_7d", "{}", ex=5)


@pytest.mark.asyncio
async def test_unreachable_store_short_circuits(fake_redis, metrics):
    fake_redis.ping.side_effect = RedisConnectionError("connection refused")
    cache = SummaryCache(fake_redis, metrics=metrics, clock=FakeClock())

    assert await cache.connect() is ConnectionState.UNAVAILABLE
    assert await cache.get_summary("acc_1", SummaryWindow.LAST_24H) is None
    await cache.set_summary("acc_1", SummaryWindow.LAST_24H, "{}")

    fake_redis.get.assert_not_awaited()
    fake_redis.set.assert_not_awaited()
    assert metrics.get("cache_skipped_total") == 2
    assert metrics.get("cache_available") == 0


@pytest.mark.asyncio
async def test_reprobes_after_interval(fake_redis):
    clock = FakeClock()
    fake_redis.ping.side_effect = RedisConnectionError("connection refused")
    cache = SummaryCache(fake_redis, reprobe_interval=5.0, clock=clock)
    await cache.connect()

    clock.now = 4.0
    await cache.get_summary("acc_1", SummaryWindow.LAST_24H)
    assert fake_redis.ping.await_count == 1

    fake_redis.ping.side_effect = None
    clock.now = 5.0
    await cache.get_summary("acc_1", SummaryWindow.LAST_24H)

    assert fake_redis.ping.await_count == 2
    assert cache.state is ConnectionState.AVAILABLE
    fake_redis.get.assert_awaited_once_with("summary:acc_1:last_24h")


@pytest.mark.asyncio
async def test_get_error_degrades_to_miss(summary_cache, fake_redis, metrics):
    fake_redis.get.side_effect = RedisTimeoutError("timed out")

    assert await summary_cache.get_summary("acc_1", SummaryWindow.LAST_24H) is None
    assert summary_cache.state is ConnectionState.UNAVAILABLE
    assert metrics.get("cache_errors_total") == 1


@pytest.mark.asyncio
async def test_set_error_is_swallowed(summary_cache, fake_redis):
    fake_redis.set.side_effect = OSError("broken pipe")

    await summary_cache.set_summary("acc_1", SummaryWindow.LAST_24H, "{}")

    assert summary_cache.state is ConnectionState.UNAVAILABLE


@pytest.mark.asyncio
async def test_no_client_is_always_unavailable():
    cache = SummaryCache(None)
    assert await cache.connect() is ConnectionState.UNAVAILABLE
    assert await cache.get_summary("acc_1", SummaryWindow.LAST_24H) is None
    await cache.set_summary("acc_1", SummaryWindow.LAST_24H, "{}")


@pytest.mark.asyncio
async def test_cancelled_probe_is_retried_later(fake_redis):
    clock = FakeClock()
    never = asyncio.Event()

    async def hanging_ping():
        await never.wait()

    fake_redis.ping.side_effect = hanging_ping
    cache = SummaryCache(fake_redis, reprobe_interval=5.0, clock=clock)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(cache.get_summary("acc_1", SummaryWindow.LAST_24H), 0.05)
    assert cache.state is ConnectionState.UNAVAILABLE

    fake_redis.ping.side_effect = None
    clock.now = 5.0
    assert await cache.get_summary("acc_1", SummaryWindow.LAST_24H) is None

    assert cache.state is ConnectionState.AVAILABLE
    assert fake_redis.ping.await_count == 2
    fake_redis.get.assert_awaited_once_with("summary:acc_1:last_24h")
