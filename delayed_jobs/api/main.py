"""
FastAPI application for read-only job monitoring.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from delayed_jobs import __version__
from delayed_jobs.api.routes import health_router, jobs_router
from delayed_jobs.config import get_settings
from delayed_jobs.db import close_db, init_db
from delayed_jobs.observability.logging import setup_logging
from delayed_jobs.observability.metrics import setup_metrics
from delayed_jobs.observability.tracing import instrument_fastapi, setup_tracing

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    setup_logging()
    setup_metrics()
    setup_tracing()
    await init_db()

    logger.info("Monitoring API started")

    yield

    await close_db()
    logger.info("Monitoring API shutdown")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Delayed Jobs Monitoring API",
        description="Read-only inspection of delayed jobs for dashboards and alerts",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.include_router(health_router)
    app.include_router(jobs_router)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
