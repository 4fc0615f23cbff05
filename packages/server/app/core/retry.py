"""
Bounded retry with exponential backoff for store calls.

Delay before retry n (0-based) is min(min_delay * backoff_factor**n, max_delay).
No jitter is applied, so workers failing together also retry together.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog
from sqlalchemy.exc import DataError, IntegrityError

from app.core.config import get_settings
from app.core.errors import EventValidationError
from app.core.metrics import get_metrics

log = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    retries: int = 3
    min_delay: float = 0.1
    max_delay: float = 2.0
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be >= 0")

    @classmethod
    def from_settings(cls) -> "RetryOptions":
        settings = get_settings()
        return cls(
            retries=settings.retry_attempts,
            min_delay=settings.retry_min_delay,
            max_delay=settings.retry_max_delay,
            backoff_factor=settings.retry_backoff_factor,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.min_delay * self.backoff_factor**attempt, self.max_delay)


def is_retryable(exc: BaseException) -> bool:
    """Validation failures and deterministic store rejections are terminal."""
    return not isinstance(exc, (EventValidationError, IntegrityError, DataError))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    retryable: Callable[[BaseException], bool] = is_retryable,
    label: str = "operation",
) -> T:
    """Run `operation`, retrying on failure; re-raise the last error when exhausted."""
    opts = options or RetryOptions()
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not retryable(exc) or attempt >= opts.retries:
                raise
            delay = opts.delay_for(attempt)
            log.warning(
                "retry.attempt_failed",
                operation=label,
                attempt=attempt + 1,
                retries=opts.retries,
                delay=delay,
                error=str(exc),
            )
            get_metrics().inc("retries_total")
            await asyncio.sleep(delay)
            attempt += 1
