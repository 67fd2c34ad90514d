"""
Delayed job repository for database operations.
Implements the data access patterns the dispatcher and the monitoring API use.
"""

import logging
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from delayed_jobs.constants import DEFAULT_QUEUE_PRIORITY, JobQueue, JobState
from delayed_jobs.db.models import DelayedJob
from delayed_jobs.utils.time import utc_now

logger = logging.getLogger(__name__)


def _state_filter(state: JobState):
    """SQL predicate selecting the rows in a lifecycle state."""
    if state == JobState.PENDING:
        return and_(DelayedJob.complete.is_(False), DelayedJob.locked.is_(False))
    if state == JobState.RUNNING:
        return and_(DelayedJob.complete.is_(False), DelayedJob.locked.is_(True))
    if state == JobState.DONE:
        return and_(
            DelayedJob.complete.is_(True),
            DelayedJob.completed_with_failure.is_(False),
        )
    return and_(
        DelayedJob.complete.is_(True),
        DelayedJob.completed_with_failure.is_(True),
    )


class DelayedJobRepository:
    """
    Repository for delayed job database operations.

    Every state transition issued while a job is locked is guarded by
    ``locked = true AND complete = false`` so a terminal row can never be
    modified again. The caller owns the transaction and commits.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        actor_id: str,
        queue: JobQueue,
        run_at: datetime,
        priority: int = DEFAULT_QUEUE_PRIORITY,
    ) -> DelayedJob:
        """
        Insert a new pending job.

        Args:
            actor_id: Opaque reference to the business entity.
            queue: Queue selecting the handler.
            run_at: Earliest instant the job may run.
            priority: Tiebreaker for the sweep order.

        Returns:
            The created DelayedJob.
        """
        now = utc_now()
        job = DelayedJob(
            actor_id=actor_id,
            queue=queue,
            priority=priority,
            run_at=run_at,
            locked=False,
            attempts=0,
            complete=False,
            completed_with_failure=False,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created delayed job",
            extra={"job_id": str(job.id), "queue": queue.value, "actor_id": actor_id},
        )
        return job

    async def get_job(self, job_id: UUID) -> DelayedJob | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The DelayedJob or None if not found.
        """
        stmt = select(DelayedJob).where(DelayedJob.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def lock_job(self, job_id: UUID) -> DelayedJob | None:
        """
        Atomically take exclusive execution rights on a job.

        A single conditional UPDATE is both the mutex and the liveness check:
        it matches only if nobody holds the lock and the job is not complete,
        so at most one caller across all replicas gets a row back.

        Args:
            job_id: The job UUID.

        Returns:
            The locked DelayedJob, or None if it is locked, complete or missing.
        """
        now = utc_now()
        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.id == job_id,
                    DelayedJob.locked.is_(False),
                    DelayedJob.complete.is_(False),
                )
            )
            .values(locked=True, locked_at=now, updated_at=now)
            .returning(DelayedJob)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is None:
            logger.debug(
                "Delayed job could not be locked (already locked or complete)",
                extra={"job_id": str(job_id)},
            )
        return job

    async def unlock_job(self, job_id: UUID) -> DelayedJob | None:
        """
        Release the lock without recording an attempt.

        Used when the job is not yet due, has no handler, or the run was cancelled.

        Args:
            job_id: The job UUID.

        Returns:
            Updated DelayedJob or None if it was not locked.
        """
        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.id == job_id,
                    DelayedJob.locked.is_(True),
                    DelayedJob.complete.is_(False),
                )
            )
            .values(locked=False, locked_at=None, updated_at=utc_now())
            .returning(DelayedJob)
        )

        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def complete_job(self, job_id: UUID) -> DelayedJob | None:
        """
        Record a successful attempt and mark the job done.

        Args:
            job_id: The job UUID.

        Returns:
            Updated DelayedJob or None if the transition failed.
        """
        now = utc_now()
        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.id == job_id,
                    DelayedJob.locked.is_(True),
                    DelayedJob.complete.is_(False),
                )
            )
            .values(
                attempts=DelayedJob.attempts + 1,
                complete=True,
                completed_at=now,
                locked=False,
                locked_at=None,
                updated_at=now,
            )
            .returning(DelayedJob)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info(
                "Delayed job completed successfully",
                extra={"job_id": str(job_id), "attempts": job.attempts},
            )

        return job

    async def fail_job_permanently(
        self,
        job_id: UUID,
        reason: str,
        error: str,
    ) -> DelayedJob | None:
        """
        Record a fatal attempt. The job becomes terminal and is never retried.

        ``run_at`` is left as it was.

        Args:
            job_id: The job UUID.
            reason: Human-readable failure reason.
            error: Diagnostic trace of the failure.

        Returns:
            Updated DelayedJob or None if the transition failed.
        """
        now = utc_now()
        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.id == job_id,
                    DelayedJob.locked.is_(True),
                    DelayedJob.complete.is_(False),
                )
            )
            .values(
                attempts=DelayedJob.attempts + 1,
                complete=True,
                completed_at=now,
                completed_with_failure=True,
                failure_reason=reason,
                last_error=error,
                failed_at=now,
                locked=False,
                locked_at=None,
                updated_at=now,
            )
            .returning(DelayedJob)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.error(
                "Delayed job failed fatally",
                extra={"job_id": str(job_id), "reason": reason},
            )

        return job

    async def schedule_retry(
        self,
        job_id: UUID,
        run_at: datetime,
        error: str,
        reason: str | None = None,
    ) -> DelayedJob | None:
        """
        Record a recoverable attempt and push run_at into the future.

        Args:
            job_id: The job UUID.
            run_at: When the job becomes eligible again.
            error: Diagnostic trace of the failure.
            reason: Optional failure reason supplied by the handler.

        Returns:
            Updated DelayedJob or None if the transition failed.
        """
        now = utc_now()
        values = {
            "attempts": DelayedJob.attempts + 1,
            "run_at": run_at,
            "last_error": error,
            "failed_at": now,
            "locked": False,
            "locked_at": None,
            "updated_at": now,
        }
        if reason is not None:
            values["failure_reason"] = reason

        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.id == job_id,
                    DelayedJob.locked.is_(True),
                    DelayedJob.complete.is_(False),
                )
            )
            .values(**values)
            .returning(DelayedJob)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.warning(
                "Delayed job scheduled for retry",
                extra={
                    "job_id": str(job_id),
                    "attempts": job.attempts,
                    "run_at": run_at.isoformat(),
                },
            )

        return job

    async def find_ready_to_run(self, limit: int) -> Sequence[DelayedJob]:
        """
        Find eligible jobs: due, unlocked and incomplete.

        Args:
            limit: Maximum number of jobs to return.

        Returns:
            Jobs ordered by run_at, then priority.
        """
        stmt = (
            select(DelayedJob)
            .where(
                and_(
                    DelayedJob.complete.is_(False),
                    DelayedJob.locked.is_(False),
                    DelayedJob.run_at <= utc_now(),
                )
            )
            .order_by(
                DelayedJob.run_at.asc(),
                DelayedJob.priority.desc(),
                DelayedJob.created_at.asc(),
            )
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def release_stale_locks(self, locked_before: datetime) -> int:
        """
        Unlock jobs whose lock was taken before ``locked_before``.

        Only used when stale lock reclaim is enabled. No attempt is counted.

        Args:
            locked_before: Locks older than this are considered abandoned.

        Returns:
            Number of jobs unlocked.
        """
        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.locked.is_(True),
                    DelayedJob.complete.is_(False),
                    DelayedJob.locked_at < locked_before,
                )
            )
            .values(locked=False, locked_at=None, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.warning(f"Released {count} stale delayed job locks")

        return count

    async def find_by_queue(self, queue: JobQueue) -> Sequence[DelayedJob]:
        """Find all jobs in a queue, next to run first."""
        stmt = (
            select(DelayedJob)
            .where(DelayedJob.queue == queue)
            .order_by(DelayedJob.priority.desc(), DelayedJob.run_at.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def find_by_actor_id(self, actor_id: str) -> Sequence[DelayedJob]:
        """Find all jobs for an actor, newest first."""
        stmt = (
            select(DelayedJob)
            .where(DelayedJob.actor_id == actor_id)
            .order_by(DelayedJob.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def find_incomplete(self) -> Sequence[DelayedJob]:
        """Find all jobs that have not reached a terminal state."""
        stmt = (
            select(DelayedJob)
            .where(DelayedJob.complete.is_(False))
            .order_by(DelayedJob.priority.desc(), DelayedJob.run_at.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def find_failed(self) -> Sequence[DelayedJob]:
        """Find permanently failed jobs, most recent failure first."""
        stmt = (
            select(DelayedJob)
            .where(DelayedJob.completed_with_failure.is_(True))
            .order_by(DelayedJob.failed_at.desc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_jobs(
        self,
        state: JobState | None = None,
        queue: JobQueue | None = None,
        actor_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[DelayedJob], int]:
        """
        List jobs with optional filtering.

        Args:
            state: Optional lifecycle state filter.
            queue: Optional queue filter.
            actor_id: Optional actor filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (jobs, total_count).
        """
        filters = []
        if state is not None:
            filters.append(_state_filter(state))
        if queue is not None:
            filters.append(DelayedJob.queue == queue)
        if actor_id is not None:
            filters.append(DelayedJob.actor_id == actor_id)

        count_stmt = select(func.count()).select_from(DelayedJob)
        stmt = select(DelayedJob)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = (
            stmt.order_by(DelayedJob.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        jobs = result.scalars().all()

        return jobs, total

    async def count_by_state(self) -> dict[JobState, int]:
        """
        Get job counts per lifecycle state.

        Returns:
            Dictionary of state -> count, with every state present.
        """
        stmt = select(
            DelayedJob.complete,
            DelayedJob.completed_with_failure,
            DelayedJob.locked,
            func.count(),
        ).group_by(
            DelayedJob.complete,
            DelayedJob.completed_with_failure,
            DelayedJob.locked,
        )
        result = await self._session.execute(stmt)

        counts = {state: 0 for state in JobState}
        for complete, with_failure, locked, count in result.all():
            if complete:
                state = JobState.FAILED_PERMANENT if with_failure else JobState.DONE
            else:
                state = JobState.RUNNING if locked else JobState.PENDING
            counts[state] += count
        return counts
