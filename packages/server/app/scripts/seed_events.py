#!/usr/bin/env python3
"""Seed the event store with synthetic activity for demos and load tests.

Usage:
    event-ingestion-seed [count] [--batch-size N] [--random-seed N] [--create-tables]
    python -m app.scripts.seed_events 100000

Events go through the ingestion worker, so the daily rollups agree with the raw
events table. Reads EI_DATABASE_URL (defaults to localhost).
"""

import argparse
import asyncio
import random
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from app.core.config import get_settings
from app.core.database import async_session_factory, engine, init_db
from app.core.logging import configure_logging
from app.tasks.ingestion import IngestionWorker, build_ingestion_worker
from event_ingestion_shared.schemas.common import KNOWN_EVENT_TYPES

DEFAULT_COUNT = 1_000_000
MAX_COUNT = 5_000_000
BATCH_SIZE = 5000
PROGRESS_EVERY = 50_000

# Accounts and users are drawn from fixed pools so summaries have some depth.
ACCOUNT_POOL = 500
USER_POOL = 2000


def clamp_count(count: int) -> int:
    return min(max(count, 1), MAX_COUNT)


def generate_event(index: int, rng: random.Random, now: datetime, run_id: str) -> dict[str, Any]:
    """One raw event, up to a week (plus a day) old."""
    timestamp = now - timedelta(
        days=rng.randint(0, 7),
        hours=rng.randint(0, 23),
        minutes=rng.randint(0, 59),
    )
    return {
        "event_id": f"evt_{run_id}_{index}",
        "account_id": f"acc_{rng.randint(1, ACCOUNT_POOL)}",
        "user_id": f"user_{rng.randint(1, USER_POOL)}",
        "type": rng.choice(KNOWN_EVENT_TYPES),
        "timestamp": timestamp.isoformat(),
        "metadata": {},
    }


async def seed_events(
    worker: IngestionWorker,
    count: int,
    batch_size: int = BATCH_SIZE,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
    run_id: Optional[str] = None,
) -> tuple[int, int]:
    """Generate and ingest `count` events. Returns (accepted, errors)."""
    rng = rng or random.Random()
    now = now or datetime.now(timezone.utc)
    run_id = run_id or uuid.uuid4().hex[:8]
    batch_size = max(1, batch_size)

    accepted = 0
    errors = 0
    submitted = 0
    for offset in range(0, count, batch_size):
        size = min(batch_size, count - offset)
        batch = [generate_event(offset + i, rng, now, run_id) for i in range(size)]
        result = await worker.process(f"seed-{run_id}-{offset}", batch)
        accepted += result.accepted
        errors += len(result.errors)
        submitted += size
        if submitted % PROGRESS_EVERY == 0 or submitted == count:
            print(f"  {submitted:,} / {count:,}")
    return accepted, errors


async def _seed(args: argparse.Namespace) -> None:
    settings = get_settings()
    configure_logging("warning", settings.log_format)
    if args.create_tables:
        await init_db()

    total = clamp_count(args.count)
    worker = build_ingestion_worker(async_session_factory)
    print(f"Seeding {total:,} events in batches of {args.batch_size}...")
    start = time.monotonic()
    try:
        accepted, errors = await seed_events(
            worker,
            total,
            batch_size=args.batch_size,
            rng=random.Random(args.random_seed),
        )
    finally:
        await engine.dispose()
    elapsed = time.monotonic() - start
    print(f"Done. Accepted {accepted:,} events ({errors:,} errors) in {elapsed:.1f}s")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Seed synthetic events.")
    parser.add_argument("count", nargs="?", type=int, default=DEFAULT_COUNT,
                        help=f"events to generate (max {MAX_COUNT:,})")
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE)
    parser.add_argument("--random-seed", type=int, default=None)
    parser.add_argument("--create-tables", action="store_true",
                        help="create tables first (fresh local databases)")
    asyncio.run(_seed(parser.parse_args(argv)))


if __name__ == "__main__":
    main()
