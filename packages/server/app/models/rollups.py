"""Denormalized daily rollups maintained incrementally by the ingestion worker.

Both tables are keyed by the UTC calendar date of the event's own timestamp.
"""

from datetime import date

import sqlalchemy as sa
from sqlmodel import Field

from .base import UpdatedAtMixin


class DailyTypeRollup(UpdatedAtMixin, table=True):
    """Event counts per (account, day, event type)."""

    __tablename__ = "daily_type_rollups"
    __table_args__ = (
        sa.Index("ix_daily_type_rollups_account_date", "account_id", "calendar_date"),
    )

    account_id: str = Field(primary_key=True)
    calendar_date: date = Field(primary_key=True, sa_type=sa.Date())
    event_type: str = Field(primary_key=True, max_length=50)
    count: int = Field(default=0, nullable=False)


class DailyUserRollup(UpdatedAtMixin, table=True):
    """Event counts per (account, day, user)."""

    __tablename__ = "daily_user_rollups"
    __table_args__ = (
        sa.Index("ix_daily_user_rollups_account_date", "account_id", "calendar_date"),
        sa.Index("ix_daily_user_rollups_account_date_count", "account_id", "calendar_date", "event_count"),
    )

    account_id: str = Field(primary_key=True)
    calendar_date: date = Field(primary_key=True, sa_type=sa.Date())
    user_id: str = Field(primary_key=True)
    event_count: int = Field(default=0, nullable=False)
