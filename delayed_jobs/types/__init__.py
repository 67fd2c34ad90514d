"""
Type definitions for the delayed job dispatcher.
Contains input/output type definitions, grouped by module.
"""

from delayed_jobs.types.api import (
    HealthResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
)
from delayed_jobs.types.job import (
    JobFailedError,
    JobFailure,
    JobValidationError,
)

__all__ = [
    # API types
    "JobResponse",
    "JobListResponse",
    "JobStatsResponse",
    "HealthResponse",
    # Job types
    "JobFailure",
    "JobFailedError",
    "JobValidationError",
]
