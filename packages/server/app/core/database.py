"""
Database connection and session management.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.core.config import get_settings

settings = get_settings()

# Driver-level connection failures (asyncpg raises bare OSError) count as store errors.
STORE_ERRORS = (SQLAlchemyError, OSError)


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "pool_timeout": settings.db_pool_timeout,
        "pool_pre_ping": True,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    **_engine_options(settings.database_url),
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db():
    """Create all tables (EI_AUTO_CREATE_TABLES deployments and local development)."""
    import app.models  # noqa: F401  (populates SQLModel.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> sessionmaker:
    """FastAPI dependency for services that open one session per attempt."""
    return async_session_factory


def describe_store_error(exc: BaseException) -> str:
    """First line of a store error, for logs and per-index messages."""
    text = str(exc).strip().splitlines()
    return text[0] if text else exc.__class__.__name__


def dialect_insert(session: AsyncSession, model: Any):
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    name = session.bind.dialect.name
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"ON CONFLICT inserts are not supported on {name}")
