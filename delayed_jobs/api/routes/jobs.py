"""
Read-only job inspection routes for dashboards and alerting.

Jobs are created in-process through JobDispatcher.create(); nothing here
creates or mutates a job.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from delayed_jobs.constants import API_V1_PREFIX, JobQueue, JobState
from delayed_jobs.db import get_async_session
from delayed_jobs.db.repository import DelayedJobRepository
from delayed_jobs.types.api import JobListResponse, JobResponse, JobStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


@router.get(
    "/stats",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Count jobs in each lifecycle state.",
)
async def get_job_stats(
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    """
    Get job counts per state.

    Args:
        session: Database session.

    Returns:
        JobStatsResponse with a count for every state.
    """
    counts = await DelayedJobRepository(session).count_by_state()
    return JobStatsResponse(counts=counts, total=sum(counts.values()))


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job does not exist.
    """
    job = await DelayedJobRepository(session).get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.model_validate(job)


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs with optional state, queue and actor filters.",
)
async def list_jobs(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    state: JobState | None = Query(default=None),
    queue: JobQueue | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    """
    List jobs, newest first.

    Args:
        page: Page number (1-indexed).
        page_size: Number of items per page.
        state: Optional lifecycle state filter.
        queue: Optional queue filter.
        actor_id: Optional actor filter.
        session: Database session.

    Returns:
        JobListResponse with paginated jobs.
    """
    offset = (page - 1) * page_size

    jobs, total = await DelayedJobRepository(session).list_jobs(
        state=state,
        queue=queue,
        actor_id=actor_id,
        limit=page_size,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )
