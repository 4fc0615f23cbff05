"""
Tests for the synthetic event seeding script.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from app.models.event import Event
from app.models.rollups import DailyTypeRollup, DailyUserRollup
from app.scripts.seed_events import (
    ACCOUNT_POOL,
    MAX_COUNT,
    clamp_count,
    generate_event,
    seed_events,
)
from app.services.events import EventStoreWriter
from app.services.rollups import SummaryMaintainer
from app.tasks.ingestion import IngestionWorker
from event_ingestion_shared.schemas.common import KNOWN_EVENT_TYPES
from event_ingestion_shared.schemas.events import EventCandidate

from helpers import NO_WAIT_RETRY

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("raw, expected", [(0, 1), (-5, 1), (250, 250), (10_000_000, MAX_COUNT)])
def test_clamp_count(raw, expected):
    assert clamp_count(raw) == expected


def test_generated_events_are_valid():
    rng = random.Random(7)
    for index in range(200):
        raw = generate_event(index, rng, NOW, "run1")
        event = EventCandidate.model_validate(raw)
        assert event.event_id == f"evt_run1_{index}"
        assert event.type in KNOWN_EVENT_TYPES
        assert 1 <= int(event.account_id.removeprefix("acc_")) <= ACCOUNT_POOL
        assert NOW - timedelta(days=8) < event.timestamp <= NOW


def test_generation_is_reproducible_with_a_seed():
    first = [generate_event(i, random.Random(3), NOW, "r") for i in range(5)]
    second = [generate_event(i, random.Random(3), NOW, "r") for i in range(5)]
    assert first == second


@pytest.mark.asyncio
async def test_seeding_keeps_rollups_consistent(session_factory, capsys):
    writer = EventStoreWriter(session_factory, retry_options=NO_WAIT_RETRY)
    worker = IngestionWorker(writer, SummaryMaintainer(session_factory))

    accepted, errors = await seed_events(
        worker, 7, batch_size=3, rng=random.Random(1), now=NOW, run_id="test"
    )

    assert (accepted, errors) == (7, 0)
    async with session_factory() as session:
        stored = (await session.execute(select(func.count()).select_from(Event))).scalar_one()
        type_total = (await session.execute(select(func.sum(DailyTypeRollup.count)))).scalar_one()
        user_total = (await session.execute(select(func.sum(DailyUserRollup.event_count)))).scalar_one()
    assert stored == type_total == user_total == 7
    assert "7 / 7" in capsys.readouterr().out
