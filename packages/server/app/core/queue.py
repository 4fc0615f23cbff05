"""ARQ queue connection and job helpers for asynchronous ingestion."""

from __future__ import annotations

from typing import Any

import structlog
from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job, JobStatus

from app.core.config import get_settings
from app.core.errors import TransientStoreError
from event_ingestion_shared.schemas.events import BatchResult, JobStatusResponse

log = structlog.get_logger()

settings = get_settings()

INGEST_TASK = "process_events_batch"

_queue_pool: ArqRedis | None = None


async def get_queue() -> ArqRedis:
    """Get or create the ARQ Redis pool."""
    global _queue_pool
    if _queue_pool is None:
        _queue_pool = await create_pool(
            RedisSettings.from_dsn(settings.redis_url),
            default_queue_name=settings.queue_name,
        )
    return _queue_pool


async def close_queue() -> None:
    global _queue_pool
    if _queue_pool is not None:
        await _queue_pool.close()
        _queue_pool = None


async def enqueue_events_batch(queue: ArqRedis, events: list[Any]) -> str:
    """Enqueue a batch for the ingestion worker and return its job id."""
    job = await queue.enqueue_job(INGEST_TASK, events)
    if job is None:
        raise TransientStoreError("job was not enqueued")
    log.info("queue.batch_enqueued", job_id=job.job_id, events=len(events))
    return job.job_id


async def fetch_job_status(queue: ArqRedis, job_id: str) -> JobStatusResponse:
    job = Job(job_id, queue, _queue_name=settings.queue_name)
    status = await job.status()
    response = JobStatusResponse(job_id=job_id, status=status.value)
    if status == JobStatus.complete:
        info = await job.result_info()
        if info is not None:
            response.success = info.success
            if info.success:
                response.result = BatchResult.model_validate(info.result)
    return response
