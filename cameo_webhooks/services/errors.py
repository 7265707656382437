"""
Webhook pipeline exceptions.
"""
from typing import Optional


class WebhookError(Exception):
    """Base class for webhook pipeline errors."""
    pass


class WebhookEventNotFoundError(WebhookError):
    def __init__(self, event_id):
        super().__init__(f"Webhook event {event_id} not found")
        self.event_id = event_id


class InvalidTransitionError(WebhookError):
    def __init__(self, event_id, current: str, target: str):
        super().__init__(f"Webhook event {event_id} cannot move from {current} to {target}")
        self.event_id = event_id
        self.current = current
        self.target = target


class DuplicateWebhookError(WebhookError):
    """A provider redelivered an event that is already in flight or finished."""

    def __init__(self, event_id, status: str):
        super().__init__(f"Webhook event {event_id} already recorded with status {status}")
        self.event_id = event_id
        self.status = status


class HandlerNotFoundError(WebhookError):
    def __init__(self, source: str, event_type: Optional[str] = None):
        super().__init__(f"No webhook handler registered for {source}:{event_type or '*'}")
        self.source = source
        self.event_type = event_type


class MarketplaceError(WebhookError):
    """The marketplace core API rejected or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
