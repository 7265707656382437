"""
Database models - import all models here so Alembic can discover them.
"""
from cameo_webhooks.models.webhook_event import WebhookEvent, WebhookSource, WebhookStatus
from cameo_webhooks.models.dead_letter import DeadLetterEntry

__all__ = [
    "WebhookEvent",
    "WebhookSource",
    "WebhookStatus",
    "DeadLetterEntry",
]
