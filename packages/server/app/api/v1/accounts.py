"""
Account summary endpoints.

- GET /accounts/sample: distinct account ids for demo tooling
- GET /accounts/{accountId}/summary: totals by type and top users over a window
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app.core.cache import SummaryCache, get_summary_cache
from app.core.database import get_session, get_session_factory
from app.core.metrics import get_metrics
from app.services import accounts as accounts_service
from app.services.summaries import SummaryReadCoordinator
from event_ingestion_shared.schemas.common import SummaryWindow
from event_ingestion_shared.schemas.summaries import AccountSummary, SampleAccountsResponse

router = APIRouter()


async def get_summary_coordinator(
    session_factory: sessionmaker = Depends(get_session_factory),
    cache: SummaryCache = Depends(get_summary_cache),
) -> SummaryReadCoordinator:
    return SummaryReadCoordinator.build(session_factory, cache, metrics=get_metrics())


@router.get("/sample", response_model=SampleAccountsResponse)
async def get_sample_account_ids(
    limit: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    """Up to `limit` (default 10, max 100) account ids in ascending order."""
    ids = await accounts_service.sample_account_ids(
        session, accounts_service.parse_sample_limit(limit)
    )
    return SampleAccountsResponse(account_ids=ids)


@router.get(
    "/{account_id}/summary",
    response_model=AccountSummary,
    response_model_exclude_none=True,
)
async def get_account_summary(
    account_id: str,
    window: Optional[str] = None,
    coordinator: SummaryReadCoordinator = Depends(get_summary_coordinator),
):
    """
    Event totals by type and the top 10 users for `last_24h` (default) or
    `last_7d`. Unknown windows are treated as `last_24h`.
    """
    return await coordinator.get_summary(account_id, SummaryWindow.parse(window))
