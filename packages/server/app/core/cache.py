"""
Best-effort Redis cache for computed account summaries.

The cache is advisory: every failure degrades to a miss (get) or a no-op (set)
and is never raised to the caller. Availability is tracked as an explicit
connection state:

    connecting  -> probe in flight; operations short-circuit
    available   -> operations hit Redis
    unavailable -> operations short-circuit until the re-probe interval elapses,
                   then the next operation probes again
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Callable

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.metrics import MetricsCollector, get_metrics
from app.core.redis import close_redis, get_redis
from event_ingestion_shared.schemas.common import SummaryWindow

log = structlog.get_logger()

SUMMARY_KEY_PREFIX = "summary:"
CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


def summary_key(account_id: str, window: SummaryWindow | str) -> str:
    window_value = window.value if isinstance(window, SummaryWindow) else window
    return f"{SUMMARY_KEY_PREFIX}{account_id}:{window_value}"


class SummaryCache:
    """TTL cache of serialized summaries keyed by (account_id, window)."""

    def __init__(
        self,
        client: redis.Redis | None,
        ttl_seconds: int = 30,
        reprobe_interval: float = 5.0,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._reprobe_interval = reprobe_interval
        self._metrics = metrics
        self._clock = clock
        self._state = ConnectionState.CONNECTING if client is not None else ConnectionState.UNAVAILABLE
        self._last_probe_at: float | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def available(self) -> bool:
        return self._state is ConnectionState.AVAILABLE

    async def connect(self) -> ConnectionState:
        """Probe the backing store and settle the connection state."""
        if self._client is not None:
            await self._probe()
        return self._state

    async def get_summary(self, account_id: str, window: SummaryWindow | str) -> str | None:
        if not await self._ready():
            self._count("cache_skipped_total")
            return None
        key = summary_key(account_id, window)
        try:
            value = await self._client.get(key)
        except CACHE_ERRORS as exc:
            self._mark_unavailable("get", exc)
            return None
        self._count("cache_hits_total" if value is not None else "cache_misses_total")
        return value

    async def set_summary(
        self,
        account_id: str,
        window: SummaryWindow | str,
        payload: str,
        ttl: int | None = None,
    ) -> None:
        if not await self._ready():
            self._count("cache_skipped_total")
            return
        key = summary_key(account_id, window)
        try:
            await self._client.set(key, payload, ex=ttl or self._ttl_seconds)
        except CACHE_ERRORS as exc:
            self._mark_unavailable("set", exc)

    # --- Connection state ---

    async def _ready(self) -> bool:
        if self._state is ConnectionState.AVAILABLE:
            return True
        if self._client is None or (self._state is ConnectionState.CONNECTING and self._last_probe_at is not None):
            return False
        if self._last_probe_at is None or self._clock() - self._last_probe_at >= self._reprobe_interval:
            await self._probe()
        return self._state is ConnectionState.AVAILABLE

    async def _probe(self) -> None:
        self._state = ConnectionState.CONNECTING
        self._last_probe_at = self._clock()
        try:
            await self._client.ping()
        except CACHE_ERRORS as exc:
            self._mark_unavailable("ping", exc)
        except asyncio.CancelledError as exc:
            # An abandoned probe must not leave the state stuck in CONNECTING.
            self._mark_unavailable("ping", exc)
            raise
        else:
            self._mark_available()

    def _mark_available(self) -> None:
        if self._state is not ConnectionState.AVAILABLE:
            log.info("cache.available")
        self._state = ConnectionState.AVAILABLE
        if self._metrics:
            self._metrics.set_gauge("cache_available", 1)

    def _mark_unavailable(self, operation: str, exc: BaseException) -> None:
        if self._state is not ConnectionState.UNAVAILABLE:
            log.warning("cache.unavailable", operation=operation, error=str(exc))
        self._state = ConnectionState.UNAVAILABLE
        self._last_probe_at = self._clock()
        self._count("cache_errors_total")
        if self._metrics:
            self._metrics.set_gauge("cache_available", 0)

    def _count(self, name: str) -> None:
        if self._metrics:
            self._metrics.inc(name)


_summary_cache: SummaryCache | None = None


async def get_summary_cache() -> SummaryCache:
    """Get or create the process-wide summary cache."""
    global _summary_cache
    if _summary_cache is None:
        settings = get_settings()
        _summary_cache = SummaryCache(
            await get_redis(),
            ttl_seconds=settings.summary_cache_ttl_seconds,
            reprobe_interval=settings.cache_reprobe_interval_seconds,
            metrics=get_metrics(),
        )
        await _summary_cache.connect()
    return _summary_cache


async def close_summary_cache() -> None:
    global _summary_cache
    _summary_cache = None
    await close_redis()
