"""
Account lookups for demo and load-test tooling.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.event import Event

DEFAULT_SAMPLE_LIMIT = 10
MAX_SAMPLE_LIMIT = 100


def parse_sample_limit(raw: Optional[str]) -> int:
    """Lenient ?limit= parsing: bad or non-positive values mean the default."""
    try:
        limit = int(raw) if raw is not None else DEFAULT_SAMPLE_LIMIT
    except ValueError:
        return DEFAULT_SAMPLE_LIMIT
    if limit < 1:
        return DEFAULT_SAMPLE_LIMIT
    return min(limit, MAX_SAMPLE_LIMIT)


async def sample_account_ids(session: AsyncSession, limit: int = DEFAULT_SAMPLE_LIMIT) -> list[str]:
    """Distinct account ids in ascending lexical order."""
    result = await session.execute(
        select(Event.account_id).distinct().order_by(Event.account_id).limit(limit)
    )
    return [row[0] for row in result.all()]
