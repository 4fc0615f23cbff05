"""
Summary maintainer: incrementally updates the daily rollup tables.

Each (account, day, type) and (account, day, user) group is applied with one
atomic INSERT .. ON CONFLICT DO UPDATE SET count = count + excluded.count, so
concurrent batches touching the same row add up instead of overwriting each
other. A failing group falls back to a plain UPDATE increment; if that fails
too the group is logged and skipped.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from datetime import date, datetime, timezone
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from app.core.database import STORE_ERRORS, describe_store_error, dialect_insert
from app.core.errors import MaintenanceError
from app.core.metrics import MetricsCollector
from app.models.rollups import DailyTypeRollup, DailyUserRollup
from event_ingestion_shared.schemas.events import EventCandidate

log = structlog.get_logger()


def event_day(event: EventCandidate) -> date:
    """UTC calendar date of the event's own timestamp."""
    return event.timestamp.astimezone(timezone.utc).date()


def group_events(
    events: Sequence[EventCandidate],
) -> tuple[Counter[tuple[str, date, str]], Counter[tuple[str, date, str]]]:
    """Per-batch increments keyed by (account, day, type) and (account, day, user)."""
    type_counts: Counter[tuple[str, date, str]] = Counter()
    user_counts: Counter[tuple[str, date, str]] = Counter()
    for event in events:
        day = event_day(event)
        type_counts[(event.account_id, day, event.type)] += 1
        user_counts[(event.account_id, day, event.user_id)] += 1
    return type_counts, user_counts


class SummaryMaintainer:
    """Applies batch increments to DailyTypeRollup and DailyUserRollup."""

    def __init__(self, session_factory: sessionmaker, metrics: MetricsCollector | None = None):
        self._session_factory = session_factory
        self._metrics = metrics

    async def apply(self, events: Sequence[EventCandidate]) -> int:
        """Apply increments for `events`. Returns the number of groups that failed."""
        if not events:
            return 0

        type_counts, user_counts = group_events(events)
        failed = 0

        for (account_id, day, event_type), increment in type_counts.items():
            keys = {"account_id": account_id, "calendar_date": day, "event_type": event_type}
            if not await self._apply_group(DailyTypeRollup, "count", keys, increment):
                failed += 1

        for (account_id, day, user_id), increment in user_counts.items():
            keys = {"account_id": account_id, "calendar_date": day, "user_id": user_id}
            if not await self._apply_group(DailyUserRollup, "event_count", keys, increment):
                failed += 1

        log.debug(
            "rollups.updated",
            type_groups=len(type_counts),
            user_groups=len(user_counts),
            failed=failed,
        )
        return failed

    async def _apply_group(
        self, model: Any, counter: str, keys: dict[str, Any], increment: int
    ) -> bool:
        table = model.__table__
        try:
            await self._upsert(model, counter, keys, increment)
            return True
        except STORE_ERRORS as exc:
            log.warning(
                "rollups.upsert_failed",
                table=table.name,
                account_id=keys["account_id"],
                calendar_date=str(keys["calendar_date"]),
                error=describe_store_error(exc),
            )

        try:
            await self._increment(model, counter, keys, increment)
            return True
        except STORE_ERRORS + (MaintenanceError,) as exc:
            log.error(
                "rollups.group_failed",
                table=table.name,
                account_id=keys["account_id"],
                calendar_date=str(keys["calendar_date"]),
                increment=increment,
                error=describe_store_error(exc),
            )
            if self._metrics:
                self._metrics.inc("rollup_group_failures_total")
            return False

    async def _upsert(
        self, model: Any, counter: str, keys: dict[str, Any], increment: int
    ) -> None:
        table = model.__table__
        async with self._session_factory() as session:
            async with session.begin():
                stmt = dialect_insert(session, table).values(
                    **keys,
                    **{counter: increment},
                    updated_at=datetime.now(timezone.utc),
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=list(keys),
                    set_={
                        counter: table.c[counter] + stmt.excluded[counter],
                        "updated_at": stmt.excluded["updated_at"],
                    },
                )
                await session.execute(stmt)

    async def _increment(
        self, model: Any, counter: str, keys: dict[str, Any], increment: int
    ) -> None:
        table = model.__table__
        async with self._session_factory() as session:
            async with session.begin():
                stmt = (
                    update(table)
                    .where(*(table.c[name] == value for name, value in keys.items()))
                    .values({counter: table.c[counter] + increment, "updated_at": datetime.now(timezone.utc)})
                )
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    raise MaintenanceError(f"no {table.name} row to increment")
