"""
Worker module.
Contains the dispatcher, retry strategy and handler registry.
"""

from delayed_jobs.worker.dispatcher import JobDispatcher
from delayed_jobs.worker.handlers import DelayedJobHandler, HandlerRegistry, load_registry
from delayed_jobs.worker.retry import RetryStrategy, next_retry

__all__ = [
    "JobDispatcher",
    "DelayedJobHandler",
    "HandlerRegistry",
    "load_registry",
    "RetryStrategy",
    "next_retry",
]
