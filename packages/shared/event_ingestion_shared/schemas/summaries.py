"""Account summary schemas."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .common import SummarySource, SummaryWindow


class TopUser(BaseModel):
    user_id: str
    events: int


class AccountSummary(BaseModel):
    account_id: str
    window: SummaryWindow
    totals: Dict[str, int] = Field(default_factory=dict)
    top_users: List[TopUser] = Field(default_factory=list)
    source: Optional[SummarySource] = None


class SampleAccountsResponse(BaseModel):
    account_ids: List[str]
