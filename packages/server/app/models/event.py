"""Event model (immutable, deduplicated on event_id)."""

from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONVariant, _utcnow


class Event(SQLModel, table=True):
    __tablename__ = "events"
    __table_args__ = (
        sa.Index("ix_events_account_timestamp", "account_id", "timestamp"),
        sa.Index("ix_events_account_user_timestamp", "account_id", "user_id", "timestamp"),
    )

    event_id: str = Field(primary_key=True)
    account_id: str = Field(nullable=False)
    user_id: str = Field(nullable=False)
    type: str = Field(max_length=50, nullable=False)  # message_sent, login, ... or custom strings
    timestamp: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    # "metadata" is reserved on declarative classes; the column keeps the name.
    event_metadata: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=sa.Column("metadata", JSONVariant, nullable=False),
    )
    ingested_at: datetime = Field(
        default_factory=_utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.text("CURRENT_TIMESTAMP")},
        sa_type=sa.DateTime(timezone=True),
    )
