"""
Event store writer: validates and durably persists batches of events.

Handles:
- Per-record validation (a malformed event is reported by index, never aborts the batch)
- Bulk INSERT .. ON CONFLICT (event_id) DO NOTHING, retried with backoff
- Per-record fallback when a bulk insert keeps failing
- Per-index outcomes so rollup maintenance only counts rows this call inserted
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from app.core.database import STORE_ERRORS, describe_store_error, dialect_insert
from app.core.errors import EventValidationError
from app.core.metrics import MetricsCollector
from app.core.retry import RetryOptions, with_retry
from app.models.event import Event
from event_ingestion_shared.schemas.events import BatchError, BatchResult, EventCandidate

log = structlog.get_logger()

RawEvent = Union[Mapping[str, Any], EventCandidate]


class InsertOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass
class WriteResult:
    """Outcome of one write_batch call, indexed like the input batch."""

    outcomes: list[InsertOutcome | None]
    errors: list[BatchError] = field(default_factory=list)
    accepted_events: list[EventCandidate] = field(default_factory=list)
    inserted_events: list[EventCandidate] = field(default_factory=list)

    @property
    def accepted(self) -> int:
        return len(self.accepted_events)

    def record(self, index: int, event: EventCandidate, inserted: bool) -> None:
        self.outcomes[index] = InsertOutcome.INSERTED if inserted else InsertOutcome.DUPLICATE
        self.accepted_events.append(event)
        if inserted:
            self.inserted_events.append(event)

    def fail(self, index: int, message: str) -> None:
        self.outcomes[index] = InsertOutcome.FAILED
        self.errors.append(BatchError(index=index, message=message))

    def to_batch_result(self) -> BatchResult:
        return BatchResult(
            accepted=self.accepted,
            errors=sorted(self.errors, key=lambda e: e.index),
        )


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def build_event(index: int, raw: RawEvent) -> EventCandidate:
    """Construct a validated event or raise EventValidationError for this index."""
    if isinstance(raw, EventCandidate):
        return raw
    if not isinstance(raw, Mapping):
        raise EventValidationError(index, "event must be an object")
    try:
        return EventCandidate.model_validate(raw)
    except ValidationError as exc:
        raise EventValidationError(index, _describe_validation_error(exc)) from exc


def _to_row(event: EventCandidate, ingested_at: datetime) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "account_id": event.account_id,
        "user_id": event.user_id,
        "type": event.type,
        "timestamp": event.timestamp,
        "metadata": event.metadata,
        "ingested_at": ingested_at,
    }


class EventStoreWriter:
    """Persists candidate batches; every index ends up stored or reported."""

    def __init__(
        self,
        session_factory: sessionmaker,
        retry_options: RetryOptions | None = None,
        chunk_size: int = 1000,
        metrics: MetricsCollector | None = None,
    ):
        self._session_factory = session_factory
        self._retry = retry_options or RetryOptions()
        self._chunk_size = max(1, chunk_size)
        self._metrics = metrics

    async def write_batch(self, candidates: Sequence[RawEvent]) -> WriteResult:
        result = WriteResult(outcomes=[None] * len(candidates))

        valid: list[tuple[int, EventCandidate]] = []
        for index, raw in enumerate(candidates):
            try:
                valid.append((index, build_event(index, raw)))
            except EventValidationError as exc:
                result.fail(exc.index, exc.message)

        for start in range(0, len(valid), self._chunk_size):
            await self._write_chunk(valid[start:start + self._chunk_size], result)

        log.info(
            "events.batch_written",
            submitted=len(candidates),
            accepted=result.accepted,
            inserted=len(result.inserted_events),
            errors=len(result.errors),
        )
        if self._metrics:
            self._metrics.inc("events_accepted_total", result.accepted)
            self._metrics.inc("events_inserted_total", len(result.inserted_events))
            self._metrics.inc("events_rejected_total", len(result.errors))
        return result

    async def _write_chunk(
        self, chunk: list[tuple[int, EventCandidate]], result: WriteResult
    ) -> None:
        ingested_at = datetime.now(timezone.utc)
        rows = [_to_row(event, ingested_at) for _, event in chunk]
        try:
            inserted_ids = await with_retry(
                lambda: self._insert_rows(rows),
                self._retry,
                label="events.bulk_insert",
            )
        except STORE_ERRORS as exc:
            log.warning(
                "events.bulk_insert_failed",
                rows=len(rows),
                error=describe_store_error(exc),
            )
            if self._metrics:
                self._metrics.inc("bulk_insert_fallbacks_total")
            await self._write_one_by_one(chunk, result, ingested_at)
            return

        claimed: set[str] = set()
        for index, event in chunk:
            # The same id twice in one chunk yields one RETURNING row.
            inserted = event.event_id in inserted_ids and event.event_id not in claimed
            if inserted:
                claimed.add(event.event_id)
            result.record(index, event, inserted)

    async def _write_one_by_one(
        self,
        chunk: list[tuple[int, EventCandidate]],
        result: WriteResult,
        ingested_at: datetime,
    ) -> None:
        for index, event in chunk:
            row = _to_row(event, ingested_at)
            try:
                inserted_ids = await with_retry(
                    lambda row=row: self._insert_rows([row]),
                    self._retry,
                    label="events.single_insert",
                )
            except STORE_ERRORS as exc:
                log.warning(
                    "events.insert_failed",
                    index=index,
                    event_id=event.event_id,
                    error=describe_store_error(exc),
                )
                result.fail(index, describe_store_error(exc))
                continue
            result.record(index, event, event.event_id in inserted_ids)

    async def _insert_rows(self, rows: list[dict[str, Any]]) -> set[str]:
        """Insert-if-absent; returns the ids that were actually inserted."""
        table = Event.__table__
        async with self._session_factory() as session:
            async with session.begin():
                stmt = (
                    dialect_insert(session, table)
                    .values(rows)
                    .on_conflict_do_nothing(index_elements=["event_id"])
                    .returning(table.c.event_id)
                )
                res = await session.execute(stmt)
                return {row[0] for row in res.all()}
