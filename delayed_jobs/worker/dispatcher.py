"""
Delayed job dispatcher.

Creates jobs, takes exclusive execution rights on a job with one conditional
update, runs its handler and records the outcome. Two producers feed the same
``run()`` entry point: the push right after ``create()`` and the periodic sweep.
Neither needs to know about the other because ``run()`` is safe to call
redundantly: only one caller ever gets past the lock.
"""

import asyncio
import logging
import time
import traceback
from datetime import datetime, timedelta
from uuid import UUID

from opentelemetry.trace import Tracer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delayed_jobs.constants import (
    DEFAULT_QUEUE_PRIORITY,
    LAST_ERROR_TRACE_LIMIT,
    OUTCOME_FAILED,
    OUTCOME_RETRY,
    OUTCOME_SUCCEEDED,
    QUEUE_PRIORITIES,
    SPAN_ACQUIRE_JOB,
    SPAN_CREATE_JOB,
    SPAN_EXECUTE_JOB,
    SPAN_RUN_JOB,
    JobQueue,
)
from delayed_jobs.db.connection import session_scope
from delayed_jobs.db.models import DelayedJob
from delayed_jobs.db.repository import DelayedJobRepository
from delayed_jobs.observability.logging import job_log_context
from delayed_jobs.observability.metrics import MetricsCollector, get_metrics
from delayed_jobs.observability.tracing import get_tracer, mark_span_failed
from delayed_jobs.types.job import JobFailedError, JobFailure, JobValidationError
from delayed_jobs.utils.time import as_utc, utc_now
from delayed_jobs.worker.handlers import DelayedJobHandler, HandlerRegistry
from delayed_jobs.worker.retry import RetryStrategy

logger = logging.getLogger(__name__)


def format_error(failure: JobFailure) -> str:
    """
    Diagnostic trace stored in ``last_error``.

    The innermost frames of the exception when there is one, otherwise the
    failure reason.
    """
    if failure.cause is None:
        return failure.message
    return "".join(
        traceback.format_exception(failure.cause, limit=-LAST_ERROR_TRACE_LIMIT)
    )


class JobDispatcher:
    """
    Runs delayed jobs with at-least-once semantics.

    Guarantees at most one concurrent execution per job across any number of
    replicas sharing the database, but not at most one execution ever:
    handlers must tolerate being re-run for the same actor.

    Features:
    - Atomic acquisition through a conditional UPDATE (no external lock manager)
    - Tagged recoverable/fatal failures with quartic backoff retries
    - Lock released on every exit path
    - Tracked background runs for the push path, drained on shutdown
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: HandlerRegistry,
        retry_strategy: RetryStrategy | None = None,
        metrics: MetricsCollector | None = None,
        tracer: Tracer | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            session_factory: Factory for database sessions.
            registry: Handlers per queue, fixed for the dispatcher's lifetime.
            retry_strategy: Backoff for recoverable failures.
            metrics: Metrics collector. Defaults to the process-wide one.
            tracer: Tracer. Defaults to the process-wide one.
        """
        self._session_factory = session_factory
        self._registry = registry
        self._retry_strategy = retry_strategy or RetryStrategy()
        self._metrics = metrics or get_metrics()
        self._tracer = tracer or get_tracer()
        self._inflight: set[asyncio.Task] = set()

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def inflight_count(self) -> int:
        """Number of signalled runs that have not finished yet."""
        return len(self._inflight)

    async def create(
        self,
        actor_id: str,
        queue: JobQueue | str,
        run_at: datetime | None = None,
    ) -> DelayedJob:
        """
        Persist a new job and signal an immediate attempt.

        Args:
            actor_id: Opaque reference to the business entity.
            queue: Queue selecting the handler.
            run_at: Earliest execution time. Defaults to now.

        Returns:
            The created DelayedJob.

        Raises:
            JobValidationError: If actor_id is empty or queue is unknown.
        """
        if not actor_id or not actor_id.strip():
            raise JobValidationError("actor_id must not be empty")
        try:
            queue = JobQueue(queue)
        except ValueError:
            raise JobValidationError(f"Unknown queue: {queue!r}") from None

        with self._tracer.start_as_current_span(SPAN_CREATE_JOB) as span:
            span.set_attribute("job.queue", queue.value)
            span.set_attribute("job.actor_id", actor_id)

            async with session_scope(self._session_factory) as session:
                repo = DelayedJobRepository(session)
                job = await repo.create_job(
                    actor_id=actor_id,
                    queue=queue,
                    run_at=as_utc(run_at) if run_at else utc_now(),
                    priority=QUEUE_PRIORITIES.get(queue, DEFAULT_QUEUE_PRIORITY),
                )

            span.set_attribute("job.id", str(job.id))

        self._metrics.record_job_created(queue.value)

        # Committed before signalling; a lost signal is picked up by the sweep
        self.signal(job.id)
        return job

    async def create_with_delay(
        self,
        actor_id: str,
        queue: JobQueue | str,
        delay: timedelta,
    ) -> DelayedJob:
        """
        Create a job that becomes eligible after ``delay``.

        Args:
            actor_id: Opaque reference to the business entity.
            queue: Queue selecting the handler.
            delay: How long from now to wait.

        Returns:
            The created DelayedJob.
        """
        return await self.create(actor_id, queue, utc_now() + delay)

    def signal(self, job_id: UUID) -> asyncio.Task:
        """
        Schedule ``run(job_id)`` in the background.

        Args:
            job_id: The job UUID.

        Returns:
            The task running the job.
        """
        task = asyncio.create_task(self._run_signalled(job_id))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def drain(self) -> None:
        """Wait for all signalled runs to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_signalled(self, job_id: UUID) -> None:
        try:
            await self.run(job_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Error running signalled delayed job",
                extra={"job_id": str(job_id)},
            )

    async def run(self, job_id: UUID) -> DelayedJob | None:
        """
        Attempt one execution of a job.

        Steps:
        1. Take the lock; if someone else holds it or the job is complete, stop.
        2. If run_at is still in the future, unlock without counting an attempt.
        3. If no handler is registered for the queue, log, unlock, stop.
        4. Run the handler and record success or failure.

        Handler errors never escape. Database errors propagate.

        Args:
            job_id: The job UUID.

        Returns:
            The job as persisted after this call, or None if the lock was
            not acquired.
        """
        with self._tracer.start_as_current_span(SPAN_RUN_JOB) as span:
            span.set_attribute("job.id", str(job_id))

            job = await self._acquire(job_id)
            if job is None:
                return None

            span.set_attribute("job.queue", job.queue.value)
            span.set_attribute("job.attempts", job.attempts)

            with job_log_context(job_id=str(job.id), queue=job.queue.value):
                try:
                    return await self._run_locked(job)
                except asyncio.CancelledError:
                    # Cancelled mid-run: give the lock back, no attempt counted
                    await asyncio.shield(self._release(job.id))
                    raise

    async def _acquire(self, job_id: UUID) -> DelayedJob | None:
        with self._tracer.start_as_current_span(SPAN_ACQUIRE_JOB) as span:
            span.set_attribute("job.id", str(job_id))

            async with session_scope(self._session_factory) as session:
                job = await DelayedJobRepository(session).lock_job(job_id)

            span.set_attribute("job.acquired", job is not None)

        if job is None:
            self._metrics.record_lock_contention()
        return job

    async def _run_locked(self, job: DelayedJob) -> DelayedJob | None:
        if not job.is_due():
            logger.debug(
                "Delayed job is not ready to run yet",
                extra={"job_id": str(job.id), "run_at": job.run_at.isoformat()},
            )
            return await self._release(job.id)

        handler = self._registry.get(job.queue)
        if handler is None:
            # Left pending until a handler is deployed and the sweep finds it again
            logger.error(
                "No handler registered for queue",
                extra={"job_id": str(job.id), "queue": job.queue.value},
            )
            self._metrics.record_missing_handler(job.queue.value)
            return await self._release(job.id)

        logger.info(
            "Processing delayed job",
            extra={
                "job_id": str(job.id),
                "queue": job.queue.value,
                "actor_id": job.actor_id,
                "attempt": job.attempts + 1,
            },
        )

        start_time = time.monotonic()
        failure = await self._execute(job, handler)
        duration = time.monotonic() - start_time

        try:
            if failure is None:
                return await self._handle_success(job, duration)
            return await self._handle_failure(job, failure, duration)
        except Exception:
            # Outcome not persisted: unlock so the job is eligible again
            await asyncio.shield(self._release_after_error(job.id))
            raise

    async def _execute(
        self,
        job: DelayedJob,
        handler: DelayedJobHandler,
    ) -> JobFailure | None:
        """Invoke the handler and turn every way it can fail into a JobFailure."""
        with self._tracer.start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job.id", str(job.id))
            span.set_attribute("job.queue", job.queue.value)
            span.set_attribute("job.handler", type(handler).__name__)

            try:
                result = await handler.run(job.actor_id)
            except JobFailedError as e:
                failure = e.failure
                if failure.cause is None:
                    failure = JobFailure(kind=failure.kind, reason=failure.reason, cause=e)
            except Exception as e:
                failure = JobFailure.recoverable(cause=e)
            else:
                failure = result if isinstance(result, JobFailure) else None

            if failure is not None:
                span.set_attribute("job.failure_kind", failure.kind.value)
                mark_span_failed(span, failure.message, failure.cause)

            return failure

    async def _handle_success(self, job: DelayedJob, duration: float) -> DelayedJob | None:
        async with session_scope(self._session_factory) as session:
            updated = await DelayedJobRepository(session).complete_job(job.id)
        self._metrics.record_attempt(job.queue.value, OUTCOME_SUCCEEDED, duration)
        return updated

    async def _handle_failure(
        self,
        job: DelayedJob,
        failure: JobFailure,
        duration: float,
    ) -> DelayedJob | None:
        """
        Record a failed attempt.

        Fatal failures end the job; everything else is retried after backoff.
        """
        error = format_error(failure)

        if failure.is_fatal:
            async with session_scope(self._session_factory) as session:
                updated = await DelayedJobRepository(session).fail_job_permanently(
                    job.id,
                    reason=failure.message,
                    error=error,
                )
            self._metrics.record_attempt(job.queue.value, OUTCOME_FAILED, duration)
            return updated

        attempts = job.attempts + 1
        retry_at = self._retry_strategy.next_retry(attempts)

        logger.warning(
            f"Delayed job failed: {failure.message}",
            extra={"job_id": str(job.id), "attempts": attempts},
            exc_info=failure.cause,
        )

        async with session_scope(self._session_factory) as session:
            updated = await DelayedJobRepository(session).schedule_retry(
                job.id,
                run_at=retry_at,
                error=error,
                reason=failure.reason,
            )
        self._metrics.record_attempt(job.queue.value, OUTCOME_RETRY, duration)
        return updated

    async def _release(self, job_id: UUID) -> DelayedJob | None:
        async with session_scope(self._session_factory) as session:
            return await DelayedJobRepository(session).unlock_job(job_id)

    async def _release_after_error(self, job_id: UUID) -> None:
        try:
            await self._release(job_id)
        except Exception:
            logger.exception(
                "Failed to release delayed job lock after error",
                extra={"job_id": str(job_id)},
            )
