"""
Shared fixtures: in-memory SQLite store, AsyncMock Redis, and an API client
wired to both through dependency overrides.
"""

from __future__ import annotations

import os

# Keep module-level engine creation off PostgreSQL drivers during tests.
os.environ.setdefault("EI_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.cache import SummaryCache
from app.core.metrics import MetricsCollector


@pytest.fixture
async def db_engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def redis_store() -> dict[str, str]:
    return {}


@pytest.fixture
def fake_redis(redis_store):
    """AsyncMock standing in for redis.asyncio.Redis, backed by a dict."""
    client = AsyncMock()
    client.ping.return_value = True

    async def _get(key):
        return redis_store.get(key)

    async def _set(key, value, ex=None):
        redis_store[key] = value
        return True

    client.get.side_effect = _get
    client.set.side_effect = _set
    return client


@pytest.fixture
async def summary_cache(fake_redis, metrics):
    cache = SummaryCache(fake_redis, ttl_seconds=30, metrics=metrics)
    await cache.connect()
    return cache


@pytest.fixture
async def client(session_factory, summary_cache):
    from app.core.cache import get_summary_cache
    from app.core.database import get_session, get_session_factory
    from app.main import app

    async def _session():
        async with session_factory() as session:
            yield session
            await session.commit()

    async def _cache():
        return summary_cache

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_summary_cache] = _cache
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
