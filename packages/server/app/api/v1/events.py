"""
Event ingestion endpoints.

- POST /events: write a batch now (201 / 207 / 400)
- POST /events/jobs: queue a batch for the ingestion worker (202)
- GET /events/jobs/{jobId}: status and result of a queued batch
"""

from __future__ import annotations

from arq.connections import ArqRedis
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import sessionmaker

from app.core.database import get_session_factory
from app.core.queue import enqueue_events_batch, fetch_job_status, get_queue
from app.tasks.ingestion import IngestionWorker, build_ingestion_worker
from event_ingestion_shared.schemas.events import (
    BatchAcceptedResponse,
    BatchPartialResponse,
    BatchRejectedResponse,
    EventBatchCreate,
    JobAccepted,
    JobStatusResponse,
)

router = APIRouter()


def get_ingestion_worker(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> IngestionWorker:
    return build_ingestion_worker(session_factory)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"model": BatchAcceptedResponse},
        207: {"model": BatchPartialResponse},
        400: {"model": BatchRejectedResponse},
    },
    summary="Ingest a batch of events",
)
async def create_events(
    body: EventBatchCreate,
    response: Response,
    worker: IngestionWorker = Depends(get_ingestion_worker),
):
    """
    Validate, persist and roll up a batch in-process.

    Malformed events are reported by index; the rest of the batch is kept.
    Re-sending an event_id that is already stored counts as accepted.
    """
    result = await worker.process(None, body.events)

    if result.errors and result.accepted == 0:
        response.status_code = status.HTTP_400_BAD_REQUEST
        return BatchRejectedResponse(errors=result.errors)
    if result.errors:
        response.status_code = status.HTTP_207_MULTI_STATUS
        return BatchPartialResponse(accepted=result.accepted, errors=result.errors)
    return BatchAcceptedResponse(accepted=result.accepted)


@router.post(
    "/jobs",
    response_model=JobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a batch of events",
)
async def enqueue_events(
    body: EventBatchCreate,
    queue: ArqRedis = Depends(get_queue),
):
    """Hand the batch to the ingestion worker; poll the job for its result."""
    job_id = await enqueue_events_batch(queue, body.events)
    return JobAccepted(job_id=job_id)


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
    summary="Get a queued batch's status",
)
async def get_events_job(
    job_id: str,
    queue: ArqRedis = Depends(get_queue),
):
    job = await fetch_job_status(queue, job_id)
    if job.status == "not_found":
        raise HTTPException(status_code=404, detail="Job not found")
    return job
