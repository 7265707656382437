"""
Tests for cameo_webhooks/services/handler_registry.py.
"""
from unittest.mock import AsyncMock

import pytest

from cameo_webhooks.services.errors import HandlerNotFoundError
from cameo_webhooks.services.handler_registry import HandlerRegistry


class TestRegister:
    async def test_decorator_registers_all_event_types(self):
        registry = HandlerRegistry()
        calls = []

        @registry.register("stripe", "transfer.paid", "transfer.failed")
        async def on_transfer(payload):
            calls.append(payload["id"])
            return "handled"

        assert await registry.resolve("stripe", "transfer.paid")({"id": "tr_1"}) == "handled"
        assert await registry.resolve("stripe", "transfer.failed")({"id": "tr_2"}) == "handled"
        assert calls == ["tr_1", "tr_2"]
        assert registry.event_types("stripe") == ["transfer.failed", "transfer.paid"]

    def test_unknown_source_rejected(self):
        registry = HandlerRegistry()
        with pytest.raises(HandlerNotFoundError):
            registry.register("paypal", "payment")

    def test_requires_event_type(self):
        with pytest.raises(ValueError):
            HandlerRegistry().register("stripe")


class TestResolve:
    async def test_unrouted_event_type_is_noop(self):
        registry = HandlerRegistry()
        result = await registry.resolve("stripe", "customer.created")({"id": "cus_1"})
        assert result == {"status": "ignored", "event_type": "customer.created"}

    def test_unknown_source(self):
        with pytest.raises(HandlerNotFoundError) as exc_info:
            HandlerRegistry().resolve("paypal", "x")
        assert exc_info.value.source == "paypal"


class TestBind:
    async def test_bind_passes_payload(self):
        registry = HandlerRegistry()
        handler = AsyncMock(return_value="ok")
        registry.add("fal", "training_update", handler)

        bound = registry.bind("fal", "training_update", {"request_id": "job_1"})
        assert await bound() == "ok"
        handler.assert_awaited_once_with({"request_id": "job_1"})

    async def test_bind_resolves_at_bind_time(self):
        registry = HandlerRegistry()
        first = AsyncMock(return_value=1)
        registry.add("replicate", "prediction_update", first)
        bound = registry.bind("replicate", "prediction_update", {})
        registry.add("replicate", "prediction_update", AsyncMock(return_value=2))
        assert await bound() == 1
