"""
Event Ingestion API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1 import router as api_v1_router
from app.core.cache import SummaryCache, close_summary_cache, get_summary_cache
from app.core.config import get_settings
from app.core.database import STORE_ERRORS, engine, get_session, init_db
from app.core.errors import TransientStoreError
from app.core.logging import configure_logging
from app.core.metrics import get_metrics
from app.core.middleware import RequestTimeoutMiddleware, error_response
from app.core.queue import close_queue

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Event Ingestion",
        description="High-volume activity event ingestion with per-account summaries.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(RequestTimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.exception_handler(TransientStoreError)
    async def transient_store_error_handler(request: Request, exc: TransientStoreError):
        log.error("request.store_unavailable", path=request.url.path, error=str(exc))
        return error_response(503, "STORE_UNAVAILABLE", "Storage temporarily unavailable, retry later.")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check(
        session: AsyncSession = Depends(get_session),
        cache: SummaryCache = Depends(get_summary_cache),
    ):
        """Readiness: the database must answer; the cache is reported, not required."""
        try:
            await session.execute(text("SELECT 1"))
        except STORE_ERRORS as exc:
            log.warning("ready.database_unreachable", error=str(exc))
            return error_response(503, "DATABASE_UNAVAILABLE", "Database is not reachable.")
        return {"status": "ready", "database": "ok", "cache": cache.state.value}

    @app.get("/metrics", tags=["System"], response_class=PlainTextResponse)
    async def metrics():
        """Prometheus text exposition of pipeline counters."""
        return get_metrics().to_prometheus()

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level, settings.log_format)
        if settings.auto_create_tables:
            await init_db()
        cache = await get_summary_cache()
        log.info("event_ingestion.starting", cache=cache.state.value)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("event_ingestion.shutting_down")
        await close_summary_cache()
        await close_queue()
        await engine.dispose()

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
