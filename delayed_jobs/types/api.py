"""
API response type definitions.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from delayed_jobs.constants import JobQueue, JobState


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_id: str
    queue: JobQueue
    state: JobState
    priority: int
    run_at: datetime
    locked: bool
    locked_at: datetime | None
    attempts: int
    complete: bool
    completed_at: datetime | None
    completed_with_failure: bool
    failure_reason: str | None
    last_error: str | None
    failed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class JobStatsResponse(BaseModel):
    """Job counts per lifecycle state."""

    counts: dict[JobState, int]
    total: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime

