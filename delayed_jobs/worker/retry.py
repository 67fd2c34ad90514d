"""
Retry backoff for failed delayed jobs.

delay = base + attempts ** 4 seconds, capped at max_delay:

- attempt 1: 5 + 1 = 6 seconds
- attempt 2: 5 + 16 = 21 seconds
- attempt 3: 5 + 81 = 86 seconds
- attempt 5: 5 + 625 = 630 seconds (~10.5 minutes)
- attempt 9: 5 + 6561 = 6566 seconds (~1.8 hours)
- capped at 7 days
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from delayed_jobs.config import Settings
from delayed_jobs.constants import (
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_RETRY_MAX_DELAY_SECONDS,
    RETRY_EXPONENT,
)
from delayed_jobs.utils.time import utc_now


@dataclass(frozen=True)
class RetryStrategy:
    """Pure mapping from an attempt count to the next eligible run time."""

    base_delay_seconds: int = DEFAULT_RETRY_BASE_DELAY_SECONDS
    max_delay_seconds: int = DEFAULT_RETRY_MAX_DELAY_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryStrategy":
        return cls(
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
        )

    def delay_for(self, attempts: int) -> timedelta:
        """
        Backoff delay after ``attempts`` attempts.

        Args:
            attempts: Number of attempts made so far, including the failed one.

        Returns:
            The delay, never longer than max_delay_seconds.

        Raises:
            ValueError: If attempts is negative.
        """
        if attempts < 0:
            raise ValueError(f"attempts must be >= 0, got {attempts}")
        # Python ints do not overflow; the cap bounds the timedelta
        seconds = min(
            self.base_delay_seconds + attempts**RETRY_EXPONENT,
            self.max_delay_seconds,
        )
        return timedelta(seconds=seconds)

    def next_retry(self, attempts: int, now: datetime | None = None) -> datetime:
        """
        Instant at which a job with ``attempts`` attempts becomes eligible again.

        Args:
            attempts: Number of attempts made so far.
            now: Reference time, defaults to the current UTC time.

        Returns:
            now + delay_for(attempts).
        """
        return (now or utc_now()) + self.delay_for(attempts)


DEFAULT_RETRY_STRATEGY = RetryStrategy()


def next_retry(attempts: int, now: datetime | None = None) -> datetime:
    """Next retry time using the default strategy."""
    return DEFAULT_RETRY_STRATEGY.next_retry(attempts, now)
