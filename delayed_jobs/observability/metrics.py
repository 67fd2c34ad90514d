"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from delayed_jobs.constants import (
    METRIC_JOB_ATTEMPTS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CREATED,
    METRIC_LOCK_CONTENTION,
    METRIC_MISSING_HANDLER,
    METRIC_STALE_LOCKS_RECLAIMED,
    METRIC_SWEEP_JOBS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the delayed job dispatcher.

    Collects metrics for:
    - Job creation per queue
    - Execution attempts and their outcome
    - Handler execution duration
    - Lock contention and missing handlers
    - Sweep activity and stale lock reclaim
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_created = Counter(
            METRIC_JOBS_CREATED,
            "Total number of delayed jobs created",
            ["queue"],
            registry=self._registry,
        )

        self.job_attempts = Counter(
            METRIC_JOB_ATTEMPTS,
            "Total number of execution attempts by outcome",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Handler execution duration in seconds",
            ["queue", "outcome"],
            buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lock_contention = Counter(
            METRIC_LOCK_CONTENTION,
            "Run requests that did not acquire the job lock",
            registry=self._registry,
        )

        self.missing_handler = Counter(
            METRIC_MISSING_HANDLER,
            "Run requests for a queue without a registered handler",
            ["queue"],
            registry=self._registry,
        )

        self.sweep_jobs = Counter(
            METRIC_SWEEP_JOBS,
            "Eligible jobs re-dispatched by the periodic sweep",
            registry=self._registry,
        )

        self.stale_locks_reclaimed = Counter(
            METRIC_STALE_LOCKS_RECLAIMED,
            "Locks released because their holder stopped responding",
            registry=self._registry,
        )

    def record_job_created(self, queue: str) -> None:
        """Record a job creation."""
        self.jobs_created.labels(queue=queue).inc()

    def record_attempt(
        self,
        queue: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record one finished execution attempt."""
        self.job_attempts.labels(queue=queue, outcome=outcome).inc()
        self.job_duration.labels(queue=queue, outcome=outcome).observe(
            duration_seconds
        )

    def record_lock_contention(self) -> None:
        self.lock_contention.inc()

    def record_missing_handler(self, queue: str) -> None:
        self.missing_handler.labels(queue=queue).inc()

    def record_sweep(self, count: int) -> None:
        self.sweep_jobs.inc(count)

    def record_stale_locks_reclaimed(self, count: int) -> None:
        self.stale_locks_reclaimed.inc(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
