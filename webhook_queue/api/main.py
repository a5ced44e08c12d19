"""
FastAPI application entry point.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from webhook_queue import __version__
from webhook_queue.api.routes import health_router, jobs_router
from webhook_queue.config import get_settings
from webhook_queue.db import close_db, get_engine, get_session_factory, init_db
from webhook_queue.observability.logging import setup_logging
from webhook_queue.observability.metrics import setup_metrics
from webhook_queue.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
)
from webhook_queue.queue.locks import create_advisory_lock
from webhook_queue.queue.service import WebhookQueue
from webhook_queue.sweeper import Sweeper

logger = logging.getLogger(__name__)

# Called with the queue built at startup, to register the process's handlers
QueueConfigurator = Callable[[WebhookQueue], None]


def _build_lifespan(configure_queue: QueueConfigurator | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Builds the queue unless one was injected, starts the sweeper and
        drains in-flight work on shutdown.
        """
        settings = get_settings()

        # Startup
        setup_logging()
        setup_metrics()

        owns_queue = app.state.webhook_queue is None
        if owns_queue:
            await init_db()
            engine = get_engine()
            if settings.otel_enabled:
                instrument_sqlalchemy(engine.sync_engine)
            app.state.webhook_queue = WebhookQueue(
                session_factory=get_session_factory(),
                lock=create_advisory_lock(engine),
            )

        webhook_queue: WebhookQueue = app.state.webhook_queue
        if configure_queue is not None:
            configure_queue(webhook_queue)

        sweeper: Sweeper | None = None
        sweep_task: asyncio.Task | None = None
        if settings.webhook_sweep_interval_seconds <= 0:
            logger.info("Sweeper disabled by configuration")
        elif len(webhook_queue.registry) == 0:
            logger.warning("No webhook handlers registered, sweeper disabled")
        else:
            sweeper = Sweeper(webhook_queue)
            sweep_task = asyncio.create_task(sweeper.start(), name="webhook-sweeper")

        logger.info("Application started")

        yield

        # Shutdown
        if sweeper is not None and sweep_task is not None:
            await sweeper.stop()
            await sweep_task

        await webhook_queue.close()

        if owns_queue:
            app.state.webhook_queue = None
            await close_db()

        logger.info("Application shutdown")

    return lifespan


def create_app(
    webhook_queue: WebhookQueue | None = None,
    configure_queue: QueueConfigurator | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        webhook_queue: Queue to serve. Built from settings at startup if omitted.
        configure_queue: Hook to register handlers on the queue at startup.

    Returns:
        FastAPI: The configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Webhook Queue API",
        description="Durable, per-tenant webhook job queue backed by PostgreSQL",
        version=__version__,
        lifespan=_build_lifespan(configure_queue),
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.webhook_queue = webhook_queue

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)

    # Instrument with OpenTelemetry
    if settings.otel_enabled:
        setup_tracing()
        instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
