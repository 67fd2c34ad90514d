"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass

from delayed_jobs.constants import FailureKind


@dataclass(frozen=True)
class JobFailure:
    """
    Tagged failure signal produced by a handler.

    Handlers return it from ``run`` or raise it wrapped in a JobFailedError.
    The dispatcher branches on ``kind``: FATAL ends the job permanently,
    RECOVERABLE schedules a retry.
    """

    kind: FailureKind
    reason: str | None = None
    cause: BaseException | None = None

    @classmethod
    def recoverable(
        cls,
        reason: str | None = None,
        cause: BaseException | None = None,
    ) -> "JobFailure":
        """Create a failure that should be retried."""
        return cls(kind=FailureKind.RECOVERABLE, reason=reason, cause=cause)

    @classmethod
    def fatal(
        cls,
        reason: str,
        cause: BaseException | None = None,
    ) -> "JobFailure":
        """Create a failure that retrying cannot fix."""
        return cls(kind=FailureKind.FATAL, reason=reason, cause=cause)

    @property
    def is_fatal(self) -> bool:
        return self.kind == FailureKind.FATAL

    @property
    def message(self) -> str:
        """Human-readable cause, falling back to the wrapped exception."""
        if self.reason:
            return self.reason
        if self.cause is not None:
            return str(self.cause) or type(self.cause).__name__
        return self.kind.value


class JobFailedError(Exception):
    """
    Raised by handlers that prefer to signal a failure from deep in a call stack.

    The carried JobFailure decides how the dispatcher treats it.
    """

    def __init__(self, failure: JobFailure):
        super().__init__(failure.message)
        self.failure = failure


class JobValidationError(ValueError):
    """Raised when a job cannot be created from the given input."""
