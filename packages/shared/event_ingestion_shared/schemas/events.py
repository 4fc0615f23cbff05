"""Event ingestion schemas shared by the API, the ARQ worker and clients."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

class EventCandidate(BaseModel):
    """A single event as submitted by a client.

    Validated per record by the event store writer, so one malformed event
    never rejects the rest of its batch.
    """
    event_id: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    type: str = Field(min_length=1, max_length=50)  # EventType value or any custom string
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class EventBatchCreate(BaseModel):
    """Request body for POST /events and POST /events/jobs.

    Items are kept as raw objects here; per-record validation happens in the
    writer so the response can report errors by index.
    """
    events: List[Any]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class BatchError(BaseModel):
    index: int
    message: str


class BatchResult(BaseModel):
    accepted: int = 0
    errors: List[BatchError] = Field(default_factory=list)


class BatchAcceptedResponse(BaseModel):
    """201: every event accepted."""
    accepted: int


class BatchPartialResponse(BaseModel):
    """207: some events accepted, the rest reported per index."""
    accepted: int
    errors: List[BatchError]


class BatchRejectedResponse(BaseModel):
    """400: nothing accepted."""
    message: str = "Validation failed"
    errors: List[BatchError]


# ---------------------------------------------------------------------------
# Async jobs
# ---------------------------------------------------------------------------

class JobAccepted(BaseModel):
    """202: batch queued for the ingestion worker."""
    job_id: str
    status: str = "queued"


class JobStatusResponse(BaseModel):
    job_id: str
    status: str  # deferred | queued | in_progress | complete | not_found
    result: Optional[BatchResult] = None
    success: Optional[bool] = None
