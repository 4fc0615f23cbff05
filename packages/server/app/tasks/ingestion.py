"""
ARQ background task: write a batch of events, then maintain the rollups.

Per-job states:

    received -> writing -> write_ok | write_failed_partial -> maintaining -> done

Rollup maintenance is best effort. Its failures are logged and never change
the job's result or cause a retry.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from enum import Enum
from typing import Any

import structlog
from arq.connections import RedisSettings
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings
from app.core.database import async_session_factory, engine, init_db
from app.core.logging import configure_logging
from app.core.metrics import MetricsCollector, get_metrics
from app.core.retry import RetryOptions
from app.services.events import EventStoreWriter, RawEvent
from app.services.rollups import SummaryMaintainer
from event_ingestion_shared.schemas.events import BatchResult

log = structlog.get_logger()

settings = get_settings()


class JobState(str, Enum):
    RECEIVED = "received"
    WRITING = "writing"
    WRITE_OK = "write_ok"
    WRITE_FAILED_PARTIAL = "write_failed_partial"
    MAINTAINING = "maintaining"
    DONE = "done"


class IngestionWorker:
    """Drives the event store writer and the summary maintainer for one job."""

    def __init__(
        self,
        writer: EventStoreWriter,
        maintainer: SummaryMaintainer,
        increment_source: str = "inserted",
        metrics: MetricsCollector | None = None,
    ):
        self._writer = writer
        self._maintainer = maintainer
        self._increment_source = increment_source
        self._metrics = metrics

    async def process(self, job_id: str | None, candidates: Sequence[RawEvent]) -> BatchResult:
        job_log = log.bind(job_id=job_id or f"inline-{uuid.uuid4().hex[:12]}")
        job_log.info("ingestion.job_state", state=JobState.RECEIVED.value, events=len(candidates))

        job_log.debug("ingestion.job_state", state=JobState.WRITING.value)
        written = await self._writer.write_batch(candidates)
        write_state = JobState.WRITE_FAILED_PARTIAL if written.errors else JobState.WRITE_OK
        job_log.info(
            "ingestion.job_state",
            state=write_state.value,
            accepted=written.accepted,
            errors=len(written.errors),
        )

        job_log.debug("ingestion.job_state", state=JobState.MAINTAINING.value)
        if self._increment_source == "submitted":
            to_count = written.accepted_events
        else:
            to_count = written.inserted_events
        try:
            failed_groups = await self._maintainer.apply(to_count)
            if failed_groups:
                job_log.warning("ingestion.maintenance_incomplete", failed_groups=failed_groups)
        except Exception:
            job_log.exception("ingestion.maintenance_failed")
            if self._metrics:
                self._metrics.inc("maintenance_failures_total")

        result = written.to_batch_result()
        job_log.info(
            "ingestion.job_state",
            state=JobState.DONE.value,
            accepted=result.accepted,
            errors=len(result.errors),
        )
        if self._metrics:
            self._metrics.inc("jobs_processed_total")
        return result


def build_ingestion_worker(
    session_factory: sessionmaker,
    metrics: MetricsCollector | None = None,
) -> IngestionWorker:
    metrics = metrics or get_metrics()
    writer = EventStoreWriter(
        session_factory,
        retry_options=RetryOptions.from_settings(),
        chunk_size=settings.insert_chunk_size,
        metrics=metrics,
    )
    maintainer = SummaryMaintainer(session_factory, metrics=metrics)
    return IngestionWorker(
        writer,
        maintainer,
        increment_source=settings.rollup_increment_source,
        metrics=metrics,
    )


# ---------------------------------------------------------------------------
# ARQ entry points
# ---------------------------------------------------------------------------


async def process_events_batch(ctx: dict, events: list[Any]) -> dict[str, Any]:
    """Queue task: events are the raw candidates posted to /events/jobs."""
    worker: IngestionWorker = ctx["ingestion_worker"]
    result = await worker.process(ctx.get("job_id"), events)
    return result.model_dump()


async def startup(ctx: dict) -> None:
    configure_logging(settings.log_level, settings.log_format)
    if settings.auto_create_tables:
        await init_db()
    ctx["ingestion_worker"] = build_ingestion_worker(async_session_factory)
    log.info("ingestion.worker_started", queue=settings.queue_name, max_jobs=settings.worker_max_jobs)


async def shutdown(ctx: dict) -> None:
    log.info("ingestion.worker_stopping")
    await engine.dispose()


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration: `arq app.tasks.ingestion.WorkerSettings`."""

    functions = [process_events_batch]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.queue_name
    max_jobs = settings.worker_max_jobs
    job_timeout = settings.worker_job_timeout_seconds
