"""
SQLAlchemy database models.
Defines the delayed_jobs table.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from delayed_jobs.constants import JobQueue, JobState
from delayed_jobs.utils.time import as_utc, utc_now


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class DelayedJob(Base):
    """
    One unit of work: run the handler for ``queue`` against ``actor_id``.

    This row is the only shared mutable state between replicas. All
    coordination goes through a conditional update on ``locked``/``complete``.

    Key invariants:
    - complete=True is terminal, nothing changes afterwards
    - locked=True only while one execution attempt is in flight
    - eligible for execution iff run_at <= now, not locked, not complete
    """

    __tablename__ = "delayed_jobs"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    # Target
    actor_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    queue: Mapped[JobQueue] = mapped_column(
        Enum(
            JobQueue,
            name="delayed_job_queue",
            native_enum=False,
            create_constraint=True,
            length=100,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Scheduling
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Lock management
    locked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Execution history
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    complete: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_with_failure: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    failure_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )

    __table_args__ = (
        # Index for the sweep query
        Index(
            "ix_delayed_jobs_ready",
            "complete",
            "locked",
            "run_at",
        ),
        # Index for finding locks held by crashed processes
        Index(
            "ix_delayed_jobs_locked",
            "locked",
            "locked_at",
        ),
        # Index for monitoring failed jobs
        Index(
            "ix_delayed_jobs_failed_at",
            "failed_at",
        ),
    )

    @property
    def state(self) -> JobState:
        """Lifecycle state derived from the persisted flags."""
        if self.complete:
            if self.completed_with_failure:
                return JobState.FAILED_PERMANENT
            return JobState.DONE
        if self.locked:
            return JobState.RUNNING
        return JobState.PENDING

    def is_due(self, now: datetime | None = None) -> bool:
        """Check whether run_at has passed."""
        return as_utc(self.run_at) <= (now or utc_now())

    def __repr__(self) -> str:
        return (
            f"DelayedJob(id={self.id}, queue={self.queue}, actor={self.actor_id}, "
            f"state={self.state}, attempts={self.attempts})"
        )
