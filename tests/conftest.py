"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from delayed_jobs.constants import JobQueue, QUEUE_PRIORITIES
from delayed_jobs.db import Base, DelayedJob, create_session_factory
from delayed_jobs.db.repository import DelayedJobRepository
from delayed_jobs.observability.metrics import MetricsCollector
from delayed_jobs.types.job import JobFailure
from delayed_jobs.utils.time import utc_now
from delayed_jobs.worker.dispatcher import JobDispatcher
from delayed_jobs.worker.handlers import HandlerRegistry

# Point at PostgreSQL to run the suite against the production dialect
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


class RecordingHandler:
    """
    Test handler that records calls and replays scripted outcomes.

    Each call consumes the next outcome: None succeeds, a JobFailure is
    returned, an exception is raised. Once the script runs out every call
    succeeds.
    """

    def __init__(
        self,
        queue: JobQueue = JobQueue.EMAIL_ORDER_CONFIRMATION,
        outcomes: list[Any] | None = None,
        delay: float = 0.0,
        description: str = "",
    ):
        self.queue = queue
        self.description = description
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._outcomes = list(outcomes or [])
        self._delay = delay

    async def run(self, actor_id: str) -> JobFailure | None:
        self.calls.append(actor_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            outcome = self._outcomes.pop(0) if self._outcomes else None
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL, a fresh SQLite file per test by default."""
    return TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'delayed_jobs.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str):
    """Create an async database engine with a clean schema."""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by the dispatcher under test."""
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    """Isolated Prometheus registry so counters start at zero."""
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry: CollectorRegistry) -> MetricsCollector:
    return MetricsCollector(registry=metrics_registry)


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer(span_exporter: InMemorySpanExporter):
    """Tracer that keeps finished spans in memory."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider.get_tracer("tests")


@pytest.fixture
def make_handler() -> Callable[..., RecordingHandler]:
    """Factory for scripted recording handlers."""
    return RecordingHandler


@pytest.fixture
def make_dispatcher(
    session_factory,
    metrics: MetricsCollector,
    tracer,
) -> Callable[..., JobDispatcher]:
    """Factory for dispatchers wired to the test database, metrics and tracer."""

    def build(*handlers: RecordingHandler, **kwargs: Any) -> JobDispatcher:
        return JobDispatcher(
            session_factory=session_factory,
            registry=HandlerRegistry.from_handlers(handlers),
            metrics=metrics,
            tracer=tracer,
            **kwargs,
        )

    return build


@pytest.fixture
def insert_job(session_factory) -> Callable[..., Any]:
    """
    Insert a job row directly, without signalling any dispatcher.

    Simulates a job whose push signal was lost.
    """

    async def insert(
        actor_id: str = "order-1",
        queue: JobQueue = JobQueue.EMAIL_ORDER_CONFIRMATION,
        run_at: datetime | None = None,
    ) -> DelayedJob:
        async with session_factory() as session:
            job = await DelayedJobRepository(session).create_job(
                actor_id=actor_id,
                queue=queue,
                run_at=run_at or utc_now(),
                priority=QUEUE_PRIORITIES[queue],
            )
            await session.commit()
        return job

    return insert


@pytest.fixture
def fetch_job(session_factory) -> Callable[[UUID], Any]:
    """Read the current persisted state of a job in a fresh session."""

    async def fetch(job_id: UUID) -> DelayedJob | None:
        async with session_factory() as session:
            return await DelayedJobRepository(session).get_job(job_id)

    return fetch
