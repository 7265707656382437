"""
Handler registry - maps (source, event_type) to the coroutine that applies an
event's business effects. Each source gets a default handler that logs and
completes, so unrouted event types never fail or retry.
"""
import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from cameo_webhooks.models.webhook_event import WebhookSource
from cameo_webhooks.services.errors import HandlerNotFoundError

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], Awaitable[Any]]


class HandlerRegistry:
    def __init__(self, sources: Optional[tuple[str, ...]] = None):
        self._sources = tuple(sources or WebhookSource.ALL)
        self._handlers: dict[tuple[str, str], EventHandler] = {}

    def register(self, source: str, *event_types: str):
        """Decorator registering a handler for one or more event types of a source."""
        self._check_source(source)
        if not event_types:
            raise ValueError("register() needs at least one event type")

        def decorator(func: EventHandler) -> EventHandler:
            for event_type in event_types:
                self._handlers[(source, event_type)] = func
            return func

        return decorator

    def add(self, source: str, event_type: str, handler: EventHandler) -> None:
        self.register(source, event_type)(handler)

    def resolve(self, source: str, event_type: str) -> EventHandler:
        self._check_source(source)
        handler = self._handlers.get((source, event_type))
        if handler is None:
            return functools.partial(_unhandled_event, source, event_type)
        return handler

    def bind(self, source: str, event_type: str, payload: dict) -> Callable[[], Awaitable[Any]]:
        """Zero-argument handler for WebhookProcessor.process / reprocess."""
        handler = self.resolve(source, event_type)

        async def run() -> Any:
            return await handler(payload)

        return run

    def event_types(self, source: str) -> list[str]:
        return sorted(et for (src, et) in self._handlers if src == source)

    def _check_source(self, source: str) -> None:
        if source not in self._sources:
            raise HandlerNotFoundError(source)


async def _unhandled_event(source: str, event_type: str, payload: dict) -> dict:
    logger.info(
        "Unhandled %s event type: %s",
        source, event_type,
        extra={"source": source, "event_type": event_type},
    )
    return {"status": "ignored", "event_type": event_type}
