"""
Periodic sweep for eligible delayed jobs.

The sweep is the pull half of dispatch. It re-signals every job that is due,
unlocked and incomplete, which recovers signals lost between commit and
publish, fires retries whose backoff has elapsed, and keeps jobs moving when
the replica that created them is gone.
"""

import asyncio
import logging
from datetime import timedelta
from uuid import UUID

from opentelemetry.trace import Tracer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delayed_jobs.constants import (
    DEFAULT_SWEEP_BATCH_SIZE,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    SPAN_SWEEP,
)
from delayed_jobs.db.connection import session_scope
from delayed_jobs.db.repository import DelayedJobRepository
from delayed_jobs.observability.metrics import MetricsCollector, get_metrics
from delayed_jobs.observability.tracing import get_tracer
from delayed_jobs.utils.time import utc_now
from delayed_jobs.worker.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)


class Sweeper:
    """
    Periodic re-dispatcher of eligible jobs.

    Runs on its own interval to:
    1. Optionally release locks held longer than stale_lock_seconds
    2. Find up to batch_size eligible jobs, oldest run_at first
    3. Signal the dispatcher for each one
    """

    def __init__(
        self,
        dispatcher: JobDispatcher,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_SWEEP_BATCH_SIZE,
        stale_lock_seconds: int | None = None,
        metrics: MetricsCollector | None = None,
        tracer: Tracer | None = None,
    ):
        """
        Initialize the sweeper.

        Args:
            dispatcher: Dispatcher whose run() entry point is signalled.
            session_factory: Factory for database sessions.
            interval_seconds: Seconds between sweeps.
            batch_size: Maximum jobs re-dispatched per sweep.
            stale_lock_seconds: Release locks older than this. None disables it.
            metrics: Metrics collector. Defaults to the process-wide one.
            tracer: Tracer. Defaults to the process-wide one.
        """
        self.interval = interval_seconds
        self.batch_size = batch_size
        self.stale_lock_seconds = stale_lock_seconds
        self._dispatcher = dispatcher
        self._session_factory = session_factory
        self._metrics = metrics or get_metrics()
        self._tracer = tracer or get_tracer()
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Run the sweep loop until stop() is called."""
        logger.info(f"Sweeper starting with interval {self.interval}s")
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in sweeper loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Sweeper stopped")

    async def stop(self) -> None:
        """Stop the sweeper after the current cycle."""
        logger.info("Sweeper stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self, wait: bool = False) -> list[UUID]:
        """
        Run one sweep cycle.

        Args:
            wait: Await the signalled runs before returning (for tests or
                cron-style execution).

        Returns:
            IDs of the jobs that were signalled.
        """
        with self._tracer.start_as_current_span(SPAN_SWEEP) as span:
            async with session_scope(self._session_factory) as session:
                repo = DelayedJobRepository(session)

                if self.stale_lock_seconds is not None:
                    cutoff = utc_now() - timedelta(seconds=self.stale_lock_seconds)
                    released = await repo.release_stale_locks(cutoff)
                    if released:
                        self._metrics.record_stale_locks_reclaimed(released)
                    span.set_attribute("sweep.stale_locks_released", released)

                jobs = await repo.find_ready_to_run(self.batch_size)
                job_ids = [job.id for job in jobs]

            span.set_attribute("sweep.jobs", len(job_ids))

        if job_ids:
            logger.info(f"Found {len(job_ids)} delayed jobs ready to run")
            self._metrics.record_sweep(len(job_ids))

        tasks = [self._dispatcher.signal(job_id) for job_id in job_ids]
        if wait and tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        return job_ids
