"""
Integration tests for the periodic sweep.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from delayed_jobs.constants import JobState
from delayed_jobs.db.models import DelayedJob
from delayed_jobs.db.repository import DelayedJobRepository
from delayed_jobs.sweeper import Sweeper
from delayed_jobs.types.job import JobFailure
from delayed_jobs.utils.time import utc_now


class TestSweeper:
    """Tests for Sweeper."""

    @pytest.fixture
    def make_sweeper(self, session_factory, metrics, tracer):
        def build(dispatcher, **kwargs) -> Sweeper:
            return Sweeper(
                dispatcher=dispatcher,
                session_factory=session_factory,
                metrics=metrics,
                tracer=tracer,
                **kwargs,
            )

        return build

    async def _lock(self, session_factory, job_id, locked_at=None) -> None:
        async with session_factory() as session:
            await DelayedJobRepository(session).lock_job(job_id)
            if locked_at is not None:
                await session.execute(
                    update(DelayedJob)
                    .where(DelayedJob.id == job_id)
                    .values(locked_at=locked_at)
                )
            await session.commit()

    async def test_sweep_runs_job_with_lost_signal(
        self,
        make_handler,
        make_dispatcher,
        make_sweeper,
        insert_job,
        fetch_job,
    ):
        """Test that a committed job nobody signalled still runs."""
        handler = make_handler()
        dispatcher = make_dispatcher(handler)
        sweeper = make_sweeper(dispatcher)
        job = await insert_job()

        signalled = await sweeper.run_once(wait=True)

        stored = await fetch_job(job.id)
        assert signalled == [job.id]
        assert handler.calls == ["order-1"]
        assert stored.state == JobState.DONE

    async def test_sweep_skips_ineligible_jobs(
        self,
        make_handler,
        make_dispatcher,
        make_sweeper,
        insert_job,
        session_factory,
    ):
        """Test that future, locked and complete jobs are left alone."""
        handler = make_handler()
        dispatcher = make_dispatcher(handler)
        sweeper = make_sweeper(dispatcher)
        await insert_job(actor_id="future", run_at=utc_now() + timedelta(hours=1))
        locked = await insert_job(actor_id="locked")
        await self._lock(session_factory, locked.id)
        done = await insert_job(actor_id="done")
        await dispatcher.run(done.id)
        handler.calls.clear()

        signalled = await sweeper.run_once(wait=True)

        assert signalled == []
        assert handler.calls == []

    async def test_sweep_respects_batch_size_and_order(
        self,
        make_handler,
        make_dispatcher,
        make_sweeper,
        insert_job,
    ):
        """Test that each sweep takes the oldest run_at jobs up to the batch size."""
        dispatcher = make_dispatcher(make_handler())
        sweeper = make_sweeper(dispatcher, batch_size=2)
        now = utc_now()
        newest = await insert_job(actor_id="c", run_at=now - timedelta(seconds=1))
        oldest = await insert_job(actor_id="a", run_at=now - timedelta(seconds=30))
        middle = await insert_job(actor_id="b", run_at=now - timedelta(seconds=10))

        first = await sweeper.run_once(wait=True)
        second = await sweeper.run_once(wait=True)

        assert first == [oldest.id, middle.id]
        assert second == [newest.id]

    async def test_sweep_fires_elapsed_retry(
        self,
        make_handler,
        make_dispatcher,
        make_sweeper,
        insert_job,
        fetch_job,
        session_factory,
    ):
        """Test that the sweep is what retries a job once its backoff elapses."""
        handler = make_handler(outcomes=[JobFailure.recoverable("busy")])
        dispatcher = make_dispatcher(handler)
        sweeper = make_sweeper(dispatcher)
        job = await insert_job()
        await dispatcher.run(job.id)

        assert await sweeper.run_once(wait=True) == []

        async with session_factory() as session:
            await session.execute(
                update(DelayedJob)
                .where(DelayedJob.id == job.id)
                .values(run_at=utc_now() - timedelta(seconds=1))
            )
            await session.commit()

        assert await sweeper.run_once(wait=True) == [job.id]
        stored = await fetch_job(job.id)
        assert stored.state == JobState.DONE
        assert stored.attempts == 2

    async def test_stale_lock_kept_by_default(
        self,
        make_handler,
        make_dispatcher,
        make_sweeper,
        insert_job,
        fetch_job,
        session_factory,
    ):
        """Test that a lock abandoned by a crashed process is never reclaimed by default."""
        handler = make_handler()
        sweeper = make_sweeper(make_dispatcher(handler))
        job = await insert_job()
        await self._lock(session_factory, job.id, locked_at=utc_now() - timedelta(days=1))

        signalled = await sweeper.run_once(wait=True)

        stored = await fetch_job(job.id)
        assert signalled == []
        assert stored.state == JobState.RUNNING
        assert handler.calls == []

    async def test_stale_lock_reclaimed_when_enabled(
        self,
        make_handler,
        make_dispatcher,
        make_sweeper,
        insert_job,
        fetch_job,
        session_factory,
        metrics_registry,
    ):
        """Test that opt-in reclaim releases old locks and re-runs the job."""
        handler = make_handler()
        sweeper = make_sweeper(make_dispatcher(handler), stale_lock_seconds=300)
        stale = await insert_job(actor_id="stale")
        fresh = await insert_job(actor_id="fresh")
        await self._lock(session_factory, stale.id, locked_at=utc_now() - timedelta(hours=1))
        await self._lock(session_factory, fresh.id)

        signalled = await sweeper.run_once(wait=True)

        assert signalled == [stale.id]
        assert handler.calls == ["stale"]
        assert (await fetch_job(stale.id)).state == JobState.DONE
        assert (await fetch_job(fresh.id)).state == JobState.RUNNING
        assert metrics_registry.get_sample_value(
            "delayed_job_stale_locks_reclaimed_total"
        ) == 1.0

    async def test_start_and_stop(
        self,
        make_handler,
        make_dispatcher,
        make_sweeper,
        insert_job,
        fetch_job,
    ):
        """Test the sweep loop picks up work and stops promptly."""
        handler = make_handler()
        dispatcher = make_dispatcher(handler)
        sweeper = make_sweeper(dispatcher, interval_seconds=0.05)
        loop_task = asyncio.create_task(sweeper.start())

        job = await insert_job()
        for _ in range(200):
            if handler.calls:
                break
            await asyncio.sleep(0.01)

        await sweeper.stop()
        await asyncio.wait_for(loop_task, timeout=2)
        await dispatcher.drain()

        assert handler.calls == ["order-1"]
        assert (await fetch_job(job.id)).state == JobState.DONE
