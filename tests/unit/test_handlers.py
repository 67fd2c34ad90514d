"""
Unit tests for the handler registry.
"""

import sys
import types

import pytest

from delayed_jobs.constants import JobQueue
from delayed_jobs.types.job import JobFailure
from delayed_jobs.worker.handlers import (
    DelayedJobHandler,
    HandlerRegistry,
    load_registry,
)


class OrderConfirmationHandler:
    queue = JobQueue.EMAIL_ORDER_CONFIRMATION
    description = "Order confirmation email sender"

    async def run(self, actor_id: str) -> JobFailure | None:
        return None


class ShippingNotificationHandler:
    queue = JobQueue.EMAIL_SHIPPING_NOTIFICATION

    async def run(self, actor_id: str) -> JobFailure | None:
        return None


class TestHandlerRegistry:
    """Tests for HandlerRegistry."""

    def test_from_handlers_maps_each_queue(self):
        """Test that handlers are keyed by their declared queue."""
        order = OrderConfirmationHandler()
        shipping = ShippingNotificationHandler()

        registry = HandlerRegistry.from_handlers([order, shipping])

        assert len(registry) == 2
        assert registry.get(JobQueue.EMAIL_ORDER_CONFIRMATION) is order
        assert registry.get(JobQueue.EMAIL_SHIPPING_NOTIFICATION) is shipping
        assert registry.registered_queues() == frozenset(
            {JobQueue.EMAIL_ORDER_CONFIRMATION, JobQueue.EMAIL_SHIPPING_NOTIFICATION}
        )

    def test_missing_queue_returns_none(self):
        """Test lookup for a queue nobody handles."""
        registry = HandlerRegistry.from_handlers([OrderConfirmationHandler()])

        assert registry.get(JobQueue.EMAIL_GENERAL) is None
        assert JobQueue.EMAIL_GENERAL not in registry
        assert JobQueue.EMAIL_ORDER_CONFIRMATION in registry

    def test_duplicate_queue_rejected(self):
        """Test that two handlers cannot claim the same queue."""
        with pytest.raises(ValueError, match="Duplicate queue"):
            HandlerRegistry.from_handlers(
                [OrderConfirmationHandler(), OrderConfirmationHandler()]
            )

    def test_unknown_queue_key_rejected(self):
        """Test that mapping keys must be queue members."""
        with pytest.raises(ValueError, match="Unknown queue"):
            HandlerRegistry({"EMAIL_MARKETING": OrderConfirmationHandler()})

    def test_string_keys_are_normalized(self):
        """Test that queue values are accepted as keys."""
        handler = OrderConfirmationHandler()

        registry = HandlerRegistry({"EMAIL_ORDER_CONFIRMATION": handler})

        assert registry.get(JobQueue.EMAIL_ORDER_CONFIRMATION) is handler

    def test_registry_is_not_affected_by_source_mapping(self):
        """Test that mutating the input mapping does not change the registry."""
        handlers = {JobQueue.EMAIL_ORDER_CONFIRMATION: OrderConfirmationHandler()}
        registry = HandlerRegistry(handlers)

        handlers[JobQueue.EMAIL_GENERAL] = ShippingNotificationHandler()

        assert JobQueue.EMAIL_GENERAL not in registry
        assert len(registry) == 1

    def test_describe(self):
        """Test descriptions fall back to the handler class name."""
        registry = HandlerRegistry.from_handlers(
            [OrderConfirmationHandler(), ShippingNotificationHandler()]
        )

        assert registry.describe() == {
            JobQueue.EMAIL_ORDER_CONFIRMATION: "Order confirmation email sender",
            JobQueue.EMAIL_SHIPPING_NOTIFICATION: "ShippingNotificationHandler",
        }

    def test_empty_registry(self):
        registry = HandlerRegistry()

        assert len(registry) == 0
        assert registry.describe() == {}

    def test_handlers_satisfy_protocol(self):
        """Test that a plain class with queue and run() is a handler."""
        assert isinstance(OrderConfirmationHandler(), DelayedJobHandler)
        assert not isinstance(object(), DelayedJobHandler)


class TestLoadRegistry:
    """Tests for loading a registry from an import path."""

    @pytest.fixture
    def handlers_module(self, monkeypatch: pytest.MonkeyPatch) -> types.ModuleType:
        """Install a throwaway module exposing registries."""
        module = types.ModuleType("shop_jobs")
        module.registry = HandlerRegistry.from_handlers([OrderConfirmationHandler()])
        module.build_registry = lambda: HandlerRegistry.from_handlers(
            [ShippingNotificationHandler()]
        )
        module.not_a_registry = {"EMAIL_GENERAL": None}
        monkeypatch.setitem(sys.modules, "shop_jobs", module)
        return module

    def test_empty_path_gives_empty_registry(self):
        registry = load_registry("")

        assert len(registry) == 0

    @pytest.mark.parametrize("path", ["shop_jobs", "shop_jobs:", ":registry"])
    def test_malformed_path_rejected(self, path: str):
        with pytest.raises(ValueError, match="module:attribute"):
            load_registry(path)

    def test_load_instance(self, handlers_module: types.ModuleType):
        """Test loading a module-level registry instance."""
        registry = load_registry("shop_jobs:registry")

        assert registry is handlers_module.registry

    def test_load_factory(self, handlers_module: types.ModuleType):
        """Test loading a zero-argument factory."""
        registry = load_registry("shop_jobs:build_registry")

        assert registry.registered_queues() == frozenset(
            {JobQueue.EMAIL_SHIPPING_NOTIFICATION}
        )

    def test_wrong_type_rejected(self, handlers_module: types.ModuleType):
        with pytest.raises(ValueError, match="did not produce a HandlerRegistry"):
            load_registry("shop_jobs:not_a_registry")

    def test_missing_attribute(self, handlers_module: types.ModuleType):
        with pytest.raises(AttributeError):
            load_registry("shop_jobs:missing")
