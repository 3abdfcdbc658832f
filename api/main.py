"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import logging

import httpx
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker

from api.middleware import RequestContextMiddleware
from api.routes import health, sync
from core.config import Settings, settings as default_settings
from core.database import build_engine, build_session_maker
from core.logging import setup_logging
from sync_engine.runner import SyncRunner
from sync_engine.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_maker: Optional[async_sessionmaker] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the operator API.

    The database session factory and the upstream HTTP client may be injected
    (tests do); otherwise they are created at startup and closed at shutdown.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)
        logger.info("Starting order sync service")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Upstream: {settings.upstream_url}")

        engine = None
        sessions = session_maker
        if sessions is None:
            engine = build_engine(settings)
            sessions = build_session_maker(engine)

        client = http_client or httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT)

        runner = SyncRunner.from_settings(settings, client, sessions)
        scheduler = SyncScheduler(
            runner,
            interval_minutes=settings.SYNC_INTERVAL_MINUTES,
            run_on_start=settings.SYNC_ON_STARTUP,
            shutdown_timeout=settings.SHUTDOWN_TIMEOUT,
        )

        app.state.settings = settings
        app.state.runner = runner
        app.state.scheduler = scheduler
        app.state.background_tasks = set()

        if settings.ENABLE_SCHEDULER:
            scheduler.start()
        else:
            logger.info("Scheduler disabled; runs only via POST /sync/trigger")

        try:
            yield
        finally:
            logger.info("Shutting down order sync service")
            await scheduler.stop()

            pending = [t for t in app.state.background_tasks if not t.done()]
            if pending:
                logger.info(f"Waiting up to {settings.SHUTDOWN_TIMEOUT}s for a manual run to finish")
                _, still_running = await asyncio.wait(pending, timeout=settings.SHUTDOWN_TIMEOUT)
                if still_running:
                    logger.warning("Manual run still in progress at shutdown; cancelling")
                    for task in still_running:
                        task.cancel()

            if http_client is None:
                await client.aclose()
            if engine is not None:
                await engine.dispose()

    app = FastAPI(
        title="Order Sync Service",
        description="Mirrors the upstream order collection into the reporting database",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)

    app.include_router(health.router)
    app.include_router(sync.router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Order Sync Service",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
            "endpoints": {
                "status": "/sync/status",
                "runs": "/sync/runs",
                "trigger": "/sync/trigger",
            },
        }

    return app


app = create_app()
