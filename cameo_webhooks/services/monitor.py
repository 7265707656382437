"""
Webhook monitoring - read-only aggregation for the admin surface.
Empty stores yield zero counts and empty lists, never errors.
"""
import logging
from datetime import datetime
from typing import Optional

from cameo_webhooks.models.dead_letter import DeadLetterEntry
from cameo_webhooks.models.webhook_event import WebhookEvent, WebhookStatus
from cameo_webhooks.services.event_store import WebhookEventStore
from cameo_webhooks.utils.metrics import success_rate

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_event(event: WebhookEvent, include_payload: bool = False) -> dict:
    data = {
        "id": str(event.id),
        "source": event.source,
        "event_type": event.event_type,
        "provider_event_id": event.provider_event_id,
        "status": event.status,
        "retry_count": event.retry_count,
        "error_message": event.error_message,
        "next_retry_at": _iso(event.next_retry_at),
        "created_at": _iso(event.created_at),
        "updated_at": _iso(event.updated_at),
        "processed_at": _iso(event.processed_at),
    }
    if include_payload:
        data["payload"] = event.payload
    return data


def serialize_dead_letter(entry: DeadLetterEntry) -> dict:
    return {
        "id": str(entry.id),
        "webhook_event_id": str(entry.webhook_event_id),
        "final_error": entry.final_error,
        "reviewed": entry.reviewed,
        "reviewed_by": entry.reviewed_by,
        "reviewed_at": _iso(entry.reviewed_at),
        "review_note": entry.review_note,
        "created_at": _iso(entry.created_at),
        "webhook_event": serialize_event(entry.webhook_event, include_payload=True),
    }


async def get_webhook_stats(
    store: WebhookEventStore,
    source: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Counts by status plus success rate (percent of all events completed)."""
    counts = await store.count_by_status(source=source, start=start, end=end)
    total = sum(counts.values())
    completed = counts[WebhookStatus.COMPLETED]

    return {
        "total": total,
        "pending": counts[WebhookStatus.PENDING],
        "processing": counts[WebhookStatus.PROCESSING],
        "completed": completed,
        "failed": counts[WebhookStatus.FAILED],
        "dead_letter": counts[WebhookStatus.DEAD_LETTER],
        "success_rate": success_rate(completed, total),
    }


async def get_recent_failures(store: WebhookEventStore, limit: int = 50) -> list[dict]:
    events = await store.list_recent_failures(limit=limit)
    return [serialize_event(e) for e in events]


async def get_dead_letter_queue(store: WebhookEventStore, include_reviewed: bool = True) -> list[dict]:
    entries = await store.list_dead_letters(include_reviewed=include_reviewed)
    return [serialize_dead_letter(e) for e in entries]
