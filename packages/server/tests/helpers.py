"""Test data builders shared across test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from app.core.retry import RetryOptions

NO_WAIT_RETRY = RetryOptions(retries=2, min_delay=0, max_delay=0)


def make_event(
    event_id: str,
    account_id: str = "acc_1",
    user_id: str = "user_1",
    type: str = "login",
    timestamp: datetime | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Raw event payload as a client would post it."""
    ts = timestamp or datetime.now(timezone.utc) - timedelta(minutes=5)
    payload = {
        "event_id": event_id,
        "account_id": account_id,
        "user_id": user_id,
        "type": type,
        "timestamp": ts.isoformat(),
    }
    payload.update(extra)
    return payload
