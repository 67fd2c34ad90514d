"""
Delayed job handler contract and registry.

Handlers must be idempotent with respect to externally visible side effects:
delivery is at-least-once, so a handler can run more than once for the same
actor across retries.
"""

import importlib
import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Protocol, runtime_checkable

from delayed_jobs.constants import JobQueue
from delayed_jobs.types.job import JobFailure

logger = logging.getLogger(__name__)


@runtime_checkable
class DelayedJobHandler(Protocol):
    """
    One-method execution contract implemented by external collaborators.

    ``run`` returns None on success or a JobFailure describing the failure.
    It may also raise JobFailedError; any other exception is treated as
    a recoverable failure.

    Example:
        class OrderEmailHandler:
            queue = JobQueue.EMAIL_ORDER_CONFIRMATION
            description = "Order confirmation email sender"

            async def run(self, actor_id: str) -> JobFailure | None:
                order = await orders.get(actor_id)
                if order is None:
                    return JobFailure.fatal(f"Order {actor_id} not found")
                await mailer.send_confirmation(order)
                return None
    """

    queue: JobQueue

    async def run(self, actor_id: str) -> JobFailure | None: ...


class HandlerRegistry:
    """
    Immutable mapping from queue to handler, assembled once at startup.

    Passed explicitly to the dispatcher; there is no global registry.
    """

    def __init__(self, handlers: Mapping[JobQueue, DelayedJobHandler] | None = None):
        """
        Initialize the registry.

        Args:
            handlers: Mapping of queue to handler.

        Raises:
            ValueError: If a key is not a JobQueue member.
        """
        validated: dict[JobQueue, DelayedJobHandler] = {}
        for queue, handler in (handlers or {}).items():
            try:
                queue = JobQueue(queue)
            except ValueError:
                raise ValueError(f"Unknown queue for handler {handler!r}: {queue!r}") from None
            validated[queue] = handler
            logger.info(
                "Registered delayed job handler",
                extra={"queue": queue.value, "handler": type(handler).__name__},
            )
        self._handlers = MappingProxyType(validated)

    @classmethod
    def from_handlers(cls, handlers: Iterable[DelayedJobHandler]) -> "HandlerRegistry":
        """
        Build a registry from handlers that declare their own ``queue``.

        Args:
            handlers: Handler instances.

        Returns:
            The registry.

        Raises:
            ValueError: If two handlers claim the same queue.
        """
        mapping: dict[JobQueue, DelayedJobHandler] = {}
        for handler in handlers:
            queue = JobQueue(handler.queue)
            if queue in mapping:
                raise ValueError(
                    f"Duplicate queue '{queue.value}' for handlers: "
                    f"{type(mapping[queue]).__name__} and {type(handler).__name__}"
                )
            mapping[queue] = handler
        return cls(mapping)

    def get(self, queue: JobQueue) -> DelayedJobHandler | None:
        """
        Get the handler for a queue.

        Args:
            queue: The queue.

        Returns:
            The handler or None if none is registered.
        """
        return self._handlers.get(queue)

    def registered_queues(self) -> frozenset[JobQueue]:
        """All queues with a handler."""
        return frozenset(self._handlers)

    def describe(self) -> dict[JobQueue, str]:
        """Human-readable description per queue, for logging and monitoring."""
        return {
            queue: getattr(handler, "description", "") or type(handler).__name__
            for queue, handler in self._handlers.items()
        }

    def __contains__(self, queue: object) -> bool:
        return queue in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def load_registry(path: str) -> HandlerRegistry:
    """
    Load a registry from a ``module:attribute`` import path.

    The attribute is either a HandlerRegistry or a zero-argument callable
    returning one. An empty path yields an empty registry.

    Args:
        path: Import path, e.g. ``"shop.jobs:build_registry"``.

    Returns:
        The loaded registry.

    Raises:
        ValueError: If the path is malformed or does not produce a registry.
    """
    if not path:
        logger.warning("No handler registry configured, every job will stay pending")
        return HandlerRegistry()

    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Handler registry path must look like 'module:attribute', got {path!r}")

    target = getattr(importlib.import_module(module_name), attribute)
    registry = target() if callable(target) else target

    if not isinstance(registry, HandlerRegistry):
        raise ValueError(f"{path!r} did not produce a HandlerRegistry")

    logger.info(
        f"Loaded {len(registry)} delayed job handlers",
        extra={"queues": sorted(q.value for q in registry.registered_queues())},
    )
    return registry
