"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobQueue(StrEnum):
    """
    Closed set of queues. Each queue selects exactly one handler.

    The stored column value is the enum value, never free-form text.
    """

    EMAIL_ORDER_CONFIRMATION = "EMAIL_ORDER_CONFIRMATION"
    EMAIL_SHIPPING_NOTIFICATION = "EMAIL_SHIPPING_NOTIFICATION"
    EMAIL_GENERAL = "EMAIL_GENERAL"


class JobState(StrEnum):
    """
    Job lifecycle states, derived from the locked/complete flags.

    State transitions:
    - PENDING -> RUNNING (lock acquired)
    - RUNNING -> DONE (handler succeeded)
    - RUNNING -> FAILED_PERMANENT (fatal failure)
    - RUNNING -> PENDING (recoverable failure, not yet due, or no handler)
    """

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED_PERMANENT = "failed_permanent"


class FailureKind(StrEnum):
    """How a handler failure is treated by the dispatcher."""

    RECOVERABLE = "recoverable"
    FATAL = "fatal"


# Higher values win ties in the sweep order
QUEUE_PRIORITIES: dict[JobQueue, int] = {
    JobQueue.EMAIL_ORDER_CONFIRMATION: 10,
    JobQueue.EMAIL_SHIPPING_NOTIFICATION: 10,
    JobQueue.EMAIL_GENERAL: 5,
}

# Default values
DEFAULT_QUEUE_PRIORITY = 5
DEFAULT_SWEEP_INTERVAL_SECONDS = 30.0
DEFAULT_SWEEP_BATCH_SIZE = 100
DEFAULT_RETRY_BASE_DELAY_SECONDS = 5
DEFAULT_RETRY_MAX_DELAY_SECONDS = 7 * 24 * 60 * 60
RETRY_EXPONENT = 4
LAST_ERROR_TRACE_LIMIT = 20

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_JOBS_CREATED = "delayed_jobs_created_total"
METRIC_JOB_ATTEMPTS = "delayed_job_attempts_total"
METRIC_JOB_DURATION = "delayed_job_duration_seconds"
METRIC_LOCK_CONTENTION = "delayed_job_lock_contention_total"
METRIC_MISSING_HANDLER = "delayed_job_missing_handler_total"
METRIC_SWEEP_JOBS = "delayed_job_sweep_jobs_total"
METRIC_STALE_LOCKS_RECLAIMED = "delayed_job_stale_locks_reclaimed_total"

# Attempt outcomes used as metric labels
OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"

# Trace span names
SPAN_CREATE_JOB = "delayed_job.create"
SPAN_ACQUIRE_JOB = "delayed_job.acquire"
SPAN_RUN_JOB = "delayed_job.run"
SPAN_EXECUTE_JOB = "delayed_job.execute"
SPAN_SWEEP = "delayed_job.sweep"
