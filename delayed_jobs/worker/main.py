"""
Worker process for the delayed job dispatcher.

Wires the handler registry, dispatcher and sweeper together and runs the
sweep until SIGTERM/SIGINT. Business services that create jobs embed a
JobDispatcher the same way, through build_dispatcher().
"""

import asyncio
import logging
import signal

from prometheus_client import start_http_server
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delayed_jobs.config import Settings, get_settings
from delayed_jobs.db import close_db, get_engine, init_db
from delayed_jobs.observability.logging import setup_logging
from delayed_jobs.observability.metrics import setup_metrics
from delayed_jobs.observability.tracing import instrument_sqlalchemy, setup_tracing
from delayed_jobs.sweeper import Sweeper
from delayed_jobs.worker.dispatcher import JobDispatcher
from delayed_jobs.worker.handlers import HandlerRegistry, load_registry
from delayed_jobs.worker.retry import RetryStrategy

logger = logging.getLogger(__name__)


def build_dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    registry: HandlerRegistry,
    settings: Settings | None = None,
) -> JobDispatcher:
    """
    Create a dispatcher configured from settings.

    Args:
        session_factory: Factory for database sessions.
        registry: Handlers per queue.
        settings: Optional settings override.

    Returns:
        The dispatcher.
    """
    settings = settings or get_settings()
    return JobDispatcher(
        session_factory=session_factory,
        registry=registry,
        retry_strategy=RetryStrategy.from_settings(settings),
    )


def build_sweeper(
    dispatcher: JobDispatcher,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
) -> Sweeper:
    """
    Create a sweeper configured from settings.

    Args:
        dispatcher: The dispatcher to signal.
        session_factory: Factory for database sessions.
        settings: Optional settings override.

    Returns:
        The sweeper.
    """
    settings = settings or get_settings()
    return Sweeper(
        dispatcher=dispatcher,
        session_factory=session_factory,
        interval_seconds=settings.dispatcher_sweep_interval_seconds,
        batch_size=settings.dispatcher_sweep_batch_size,
        stale_lock_seconds=settings.dispatcher_stale_lock_seconds,
    )


async def run_async() -> None:
    """Run the worker asynchronously."""
    settings = get_settings()
    setup_logging()
    setup_metrics()
    setup_tracing()
    start_http_server(settings.prometheus_port)

    registry = load_registry(settings.handler_registry)
    session_factory = await init_db()
    instrument_sqlalchemy(get_engine().sync_engine)

    dispatcher = build_dispatcher(session_factory, registry, settings)
    sweeper = build_sweeper(dispatcher, session_factory, settings)

    logger.info(
        "Delayed job worker starting",
        extra={"queues": {q.value: d for q, d in registry.describe().items()}},
    )

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(sweeper.stop())
        )

    try:
        await sweeper.start()
        if dispatcher.inflight_count:
            logger.info(f"Waiting for {dispatcher.inflight_count} jobs to complete")
        await dispatcher.drain()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
