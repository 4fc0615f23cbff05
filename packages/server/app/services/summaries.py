"""
Summary read coordinator: cache → rollups → raw aggregation.

Each tier is a strategy with a uniform `try_compute`, tried in order until one
produces a summary:

- CachedSummaryStrategy: serialized summary from Redis (source=cache)
- RollupSummaryStrategy: daily rollup tables (source=denormalized)
- AggregationSummaryStrategy: GROUP BY over raw events (source=aggregation)

Rollups are day granular. To keep the window boundary exact, the partial first
day of the window is read from raw events and merged with the whole days after
it.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional, Sequence

import structlog
from pydantic import ValidationError
from sqlalchemy import func, select, union_all
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app.core.cache import SummaryCache
from app.core.config import get_settings
from app.core.database import STORE_ERRORS, describe_store_error
from app.core.errors import DegradedPathError, TransientStoreError
from app.core.metrics import MetricsCollector
from app.core.retry import RetryOptions, with_retry
from app.models.event import Event
from app.models.rollups import DailyTypeRollup, DailyUserRollup
from event_ingestion_shared.schemas.common import SummarySource, SummaryWindow
from event_ingestion_shared.schemas.summaries import AccountSummary, TopUser

log = structlog.get_logger()

WINDOW_SPANS = {
    SummaryWindow.LAST_24H: timedelta(hours=24),
    SummaryWindow.LAST_7D: timedelta(days=7),
}


def window_start(window: SummaryWindow, now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now - WINDOW_SPANS.get(window, WINDOW_SPANS[SummaryWindow.LAST_24H])


def _next_midnight(instant: datetime) -> datetime:
    return datetime.combine(instant.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)


def _build_summary(
    account_id: str,
    window: SummaryWindow,
    totals_rows: Sequence,
    top_user_rows: Sequence,
    source: SummarySource,
) -> AccountSummary:
    return AccountSummary(
        account_id=account_id,
        window=window,
        totals={row[0]: int(row[1]) for row in totals_rows},
        top_users=[TopUser(user_id=row[0], events=int(row[1])) for row in top_user_rows],
        source=source,
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class SummaryStrategy:
    """One tier of the read path. Returns None when it cannot answer."""

    name = "base"

    async def try_compute(
        self, account_id: str, window: SummaryWindow, since: datetime
    ) -> Optional[AccountSummary]:
        raise NotImplementedError


class CachedSummaryStrategy(SummaryStrategy):
    name = "cache"

    def __init__(self, cache: SummaryCache):
        self._cache = cache

    async def try_compute(self, account_id, window, since):
        payload = await self._cache.get_summary(account_id, window)
        if payload is None:
            return None
        try:
            summary = AccountSummary.model_validate_json(payload)
        except ValidationError:
            log.warning("summary.cache_payload_invalid", account_id=account_id, window=window.value)
            return None
        return summary.model_copy(update={"source": SummarySource.CACHE})


class RollupSummaryStrategy(SummaryStrategy):
    name = "denormalized"

    def __init__(self, session_factory: sessionmaker, top_users_limit: int = 10):
        self._session_factory = session_factory
        self._limit = top_users_limit

    async def try_compute(self, account_id, window, since):
        try:
            async with self._session_factory() as session:
                if not await self._has_rollups(session, account_id, since):
                    return None
                totals_rows = await self._totals(session, account_id, since)
                top_user_rows = await self._top_users(session, account_id, since)
        except STORE_ERRORS as exc:
            raise DegradedPathError(f"rollup query failed: {describe_store_error(exc)}") from exc

        if not totals_rows and not top_user_rows:
            return None
        return _build_summary(
            account_id, window, totals_rows, top_user_rows, SummarySource.DENORMALIZED
        )

    async def _has_rollups(self, session: AsyncSession, account_id: str, since: datetime) -> bool:
        stmt = (
            select(DailyTypeRollup.account_id)
            .where(
                DailyTypeRollup.account_id == account_id,
                DailyTypeRollup.calendar_date >= since.date(),
            )
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.first() is not None

    async def _totals(self, session: AsyncSession, account_id: str, since: datetime) -> list:
        whole_days = select(
            DailyTypeRollup.event_type.label("type"),
            DailyTypeRollup.count.label("events"),
        ).where(
            DailyTypeRollup.account_id == account_id,
            DailyTypeRollup.calendar_date > since.date(),
        )
        first_day = (
            select(Event.type.label("type"), func.count().label("events"))
            .where(
                Event.account_id == account_id,
                Event.timestamp >= since,
                Event.timestamp < _next_midnight(since),
            )
            .group_by(Event.type)
        )
        combined = union_all(whole_days, first_day).subquery()
        total = func.sum(combined.c.events).label("events")
        stmt = select(combined.c.type, total).group_by(combined.c.type)
        result = await session.execute(stmt)
        return result.all()

    async def _top_users(self, session: AsyncSession, account_id: str, since: datetime) -> list:
        whole_days = select(
            DailyUserRollup.user_id.label("user_id"),
            DailyUserRollup.event_count.label("events"),
        ).where(
            DailyUserRollup.account_id == account_id,
            DailyUserRollup.calendar_date > since.date(),
        )
        first_day = (
            select(Event.user_id.label("user_id"), func.count().label("events"))
            .where(
                Event.account_id == account_id,
                Event.timestamp >= since,
                Event.timestamp < _next_midnight(since),
            )
            .group_by(Event.user_id)
        )
        combined = union_all(whole_days, first_day).subquery()
        total = func.sum(combined.c.events).label("events")
        stmt = (
            select(combined.c.user_id, total)
            .group_by(combined.c.user_id)
            .order_by(total.desc(), combined.c.user_id)
            .limit(self._limit)
        )
        result = await session.execute(stmt)
        return result.all()


class AggregationSummaryStrategy(SummaryStrategy):
    """Raw GROUP BY over events; the expensive path, retried with backoff."""

    name = "aggregation"

    def __init__(
        self,
        session_factory: sessionmaker,
        top_users_limit: int = 10,
        retry_options: RetryOptions | None = None,
    ):
        self._session_factory = session_factory
        self._limit = top_users_limit
        self._retry = retry_options or RetryOptions()

    async def try_compute(self, account_id, window, since):
        try:
            totals_rows, top_user_rows = await with_retry(
                lambda: self._aggregate(account_id, since),
                self._retry,
                label="summary.aggregate",
            )
        except STORE_ERRORS as exc:
            raise TransientStoreError(f"raw aggregation failed for account {account_id}") from exc
        return _build_summary(
            account_id, window, totals_rows, top_user_rows, SummarySource.AGGREGATION
        )

    async def _aggregate(self, account_id: str, since: datetime) -> tuple[list, list]:
        async with self._session_factory() as session:
            totals = await session.execute(
                select(Event.type, func.count())
                .where(Event.account_id == account_id, Event.timestamp >= since)
                .group_by(Event.type)
            )
            events = func.count().label("events")
            top_users = await session.execute(
                select(Event.user_id, events)
                .where(Event.account_id == account_id, Event.timestamp >= since)
                .group_by(Event.user_id)
                .order_by(events.desc(), Event.user_id)
                .limit(self._limit)
            )
            return totals.all(), top_users.all()


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class SummaryReadCoordinator:
    """Runs the strategies in order and populates the cache with fresh results."""

    def __init__(
        self,
        strategies: Sequence[SummaryStrategy],
        cache: SummaryCache | None = None,
        cache_ttl_seconds: int = 30,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._strategies = list(strategies)
        self._cache = cache
        self._cache_ttl_seconds = cache_ttl_seconds
        self._metrics = metrics
        self._clock = clock

    @classmethod
    def build(
        cls,
        session_factory: sessionmaker,
        cache: SummaryCache | None,
        metrics: MetricsCollector | None = None,
    ) -> "SummaryReadCoordinator":
        settings = get_settings()
        strategies: list[SummaryStrategy] = []
        if cache is not None:
            strategies.append(CachedSummaryStrategy(cache))
        strategies.append(RollupSummaryStrategy(session_factory, settings.top_users_limit))
        strategies.append(
            AggregationSummaryStrategy(
                session_factory, settings.top_users_limit, RetryOptions.from_settings()
            )
        )
        return cls(
            strategies,
            cache=cache,
            cache_ttl_seconds=settings.summary_cache_ttl_seconds,
            metrics=metrics,
        )

    async def get_summary(
        self, account_id: str, window: SummaryWindow = SummaryWindow.LAST_24H
    ) -> AccountSummary:
        since = window_start(window, self._clock())

        for strategy in self._strategies:
            try:
                summary = await strategy.try_compute(account_id, window, since)
            except DegradedPathError as exc:
                log.warning(
                    "summary.degraded_path",
                    strategy=strategy.name,
                    account_id=account_id,
                    error=str(exc),
                )
                if self._metrics:
                    self._metrics.inc("summary_degraded_total")
                continue
            if summary is None:
                continue

            if self._metrics:
                self._metrics.inc(f"summary_source_{summary.source.value}_total")
            if summary.source is not SummarySource.CACHE and self._cache is not None:
                await self._cache.set_summary(
                    account_id, window, summary.model_dump_json(), self._cache_ttl_seconds
                )
            log.debug(
                "summary.served",
                account_id=account_id,
                window=window.value,
                source=summary.source.value,
            )
            return summary

        raise TransientStoreError(f"no summary source could answer for account {account_id}")
