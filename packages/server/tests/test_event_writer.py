"""
Tests for the event store writer.

Tests cover:
- Per-index validation errors never abort the batch
- Idempotent inserts keyed on event_id
- Bulk insert failure falling back to per-record inserts
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DataError, OperationalError

from app.models.event import Event
from app.services.events import EventStoreWriter, InsertOutcome

from helpers import NO_WAIT_RETRY, make_event


@pytest.fixture
def writer(session_factory, metrics):
    return EventStoreWriter(session_factory, retry_options=NO_WAIT_RETRY, metrics=metrics)


async def _count_events(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(Event))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_batch_with_one_invalid_event(writer, session_factory):
    batch = [make_event(f"evt_{i}") for i in range(5)]
    batch[2]["account_id"] = ""

    result = await writer.write_batch(batch)

    assert result.accepted == 4
    assert [e.index for e in result.errors] == [2]
    assert "account_id" in result.errors[0].message
    assert result.outcomes[2] is InsertOutcome.FAILED
    assert await _count_events(session_factory) == 4


@pytest.mark.asyncio
async def test_same_event_twice_is_stored_once(writer, session_factory):
    first = await writer.write_batch([make_event("evt_dup")])
    second = await writer.write_batch([make_event("evt_dup")])

    assert first.outcomes == [InsertOutcome.INSERTED]
    assert second.outcomes == [InsertOutcome.DUPLICATE]
    # Duplicates still count as accepted, but only one call inserted the row.
    assert second.accepted == 1 and second.errors == []
    assert len(first.inserted_events) + len(second.inserted_events) == 1
    assert await _count_events(session_factory) == 1


@pytest.mark.asyncio
async def test_duplicate_ids_within_one_batch(writer, session_factory):
    result = await writer.write_batch([make_event("evt_a"), make_event("evt_a"), make_event("evt_b")])

    assert result.accepted == 3
    assert result.outcomes == [InsertOutcome.INSERTED, InsertOutcome.DUPLICATE, InsertOutcome.INSERTED]
    assert [e.event_id for e in result.inserted_events] == ["evt_a", "evt_b"]
    assert await _count_events(session_factory) == 2


@pytest.mark.asyncio
async def test_metadata_is_stored_verbatim(writer, session_factory):
    await writer.write_batch([make_event("evt_meta", metadata={"campaign": "fall", "n": 3})])
    async with session_factory() as session:
        stored = await session.get(Event, "evt_meta")
    assert stored.event_metadata == {"campaign": "fall", "n": 3}
    assert stored.ingested_at is not None


@pytest.mark.asyncio
async def test_non_object_candidate_is_rejected_by_index(writer):
    result = await writer.write_batch([make_event("evt_ok"), "not-an-event"])
    assert result.accepted == 1
    assert result.errors[0].index == 1
    assert result.errors[0].message == "event must be an object"


@pytest.mark.asyncio
async def test_fully_invalid_batch(writer, session_factory):
    result = await writer.write_batch([{"event_id": ""}, {}, {"type": "login"}])
    assert result.accepted == 0
    assert [e.index for e in result.to_batch_result().errors] == [0, 1, 2]
    assert await _count_events(session_factory) == 0


@pytest.mark.asyncio
async def test_empty_batch(writer):
    result = await writer.write_batch([])
    assert result.accepted == 0
    assert result.errors == []


@pytest.mark.asyncio
async def test_bulk_failure_falls_back_to_single_inserts(writer, session_factory, metrics):
    real_insert = writer._insert_rows

    async def flaky_insert(rows):
        if len(rows) > 1:
            raise OperationalError("INSERT", {}, Exception("deadlock detected"))
        if rows[0]["event_id"] == "evt_poison":
            raise OperationalError("INSERT", {}, Exception("value too long"))
        return await real_insert(rows)

    writer._insert_rows = flaky_insert
    batch = [make_event("evt_1"), make_event("evt_poison"), make_event("evt_3")]

    result = await writer.write_batch(batch)

    assert result.accepted == 2
    assert [e.index for e in result.errors] == [1]
    assert result.outcomes == [InsertOutcome.INSERTED, InsertOutcome.FAILED, InsertOutcome.INSERTED]
    assert metrics.get("bulk_insert_fallbacks_total") == 1
    assert await _count_events(session_factory) == 2


@pytest.mark.asyncio
async def test_store_down_reports_every_index(writer, session_factory):
    async def down(rows):
        raise OperationalError("INSERT", {}, ConnectionRefusedError("connection refused"))

    writer._insert_rows = down
    result = await writer.write_batch([make_event("evt_1"), make_event("evt_2")])

    assert result.accepted == 0
    assert [e.index for e in result.errors] == [0, 1]


@pytest.mark.asyncio
async def test_large_batches_are_chunked(session_factory):
    writer = EventStoreWriter(session_factory, retry_options=NO_WAIT_RETRY, chunk_size=2)
    calls = []
    real_insert = writer._insert_rows

    async def spy(rows):
        calls.append(len(rows))
        return await real_insert(rows)

    writer._insert_rows = spy
    result = await writer.write_batch([make_event(f"evt_{i}") for i in range(5)])

    assert calls == [2, 2, 1]
    assert result.accepted == 5
    assert await _count_events(session_factory) == 5


@pytest.mark.asyncio
async def test_rejected_record_is_not_retried(writer, session_factory):
    real_insert = writer._insert_rows
    attempts = {"bulk": 0, "evt_nul": 0}

    async def rejecting_insert(rows):
        if len(rows) > 1:
            attempts["bulk"] += 1
            raise DataError("INSERT", {}, Exception("invalid byte sequence for encoding UTF8: 0x00"))
        if rows[0]["event_id"] == "evt_nul":
            attempts["evt_nul"] += 1
            raise DataError("INSERT", {}, Exception("invalid byte sequence for encoding UTF8: 0x00"))
        return await real_insert(rows)

    writer._insert_rows = rejecting_insert
    result = await writer.write_batch([make_event("evt_ok"), make_event("evt_nul")])

    assert attempts == {"bulk": 1, "evt_nul": 1}
    assert result.accepted == 1
    assert [e.index for e in result.errors] == [1]
    assert "invalid byte sequence" in result.errors[0].message
    assert await _count_events(session_factory) == 1
