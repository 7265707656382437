"""
Retry and dead letter management for webhook events.
Moves events through failed -> pending -> ... -> dead_letter using the
configured backoff schedule, and alerts when an event is dead-lettered.
"""
import logging
from typing import Optional

from cameo_webhooks.models.webhook_event import WebhookEvent
from cameo_webhooks.services.event_store import EventId, WebhookEventStore
from cameo_webhooks.services.retry_policy import RetryDecision, RetryPolicy
from cameo_webhooks.utils.alerting import AlertType, send_alert

logger = logging.getLogger(__name__)


class RetryManager:
    def __init__(
        self,
        store: WebhookEventStore,
        policy: RetryPolicy,
        cooldown_seconds: int = 0,
    ):
        self.store = store
        self.policy = policy
        self.cooldown_seconds = cooldown_seconds

    async def mark_failed(self, event_id: EventId, error: str) -> RetryDecision:
        """Record a failed attempt; schedules the next retry or dead-letters the event."""
        decision = await self.store.record_failure(event_id, error, self.policy)

        if decision.should_retry:
            logger.warning(
                "Webhook %s failed (attempt %d/%d), retry after %dms: %s",
                str(event_id)[:8], decision.retry_count, self.policy.max_retries,
                decision.retry_after_ms, error[:200],
                extra={"webhook_id": str(event_id), "retry_count": decision.retry_count},
            )
        else:
            logger.error(
                "Webhook %s exhausted retries (%d/%d) - moved to dead letter queue: %s",
                str(event_id)[:8], decision.retry_count, self.policy.max_retries, error[:200],
                extra={"webhook_id": str(event_id), "retry_count": decision.retry_count},
            )
            await send_alert(
                AlertType.DEAD_LETTER_EXHAUSTED,
                f"Webhook {event_id} moved to dead letter queue: {error[:200]}",
                extra={"webhook_id": str(event_id)},
            )
        return decision

    async def retry_webhook(self, event_id: EventId) -> WebhookEvent:
        """Re-enter a failed event into the pipeline (status -> pending)."""
        event = await self.store.reset_to_pending(event_id)
        logger.info(
            "Webhook %s queued for retry (retry_count=%d)",
            str(event_id)[:8], event.retry_count,
        )
        return event

    async def list_retryable(
        self,
        max_batch: Optional[int],
        cooldown_seconds: Optional[int] = None,
        due_only: bool = True,
    ) -> list[WebhookEvent]:
        return await self.store.list_retryable(
            max_batch=max_batch,
            max_retries=self.policy.max_retries,
            cooldown_seconds=self.cooldown_seconds if cooldown_seconds is None else cooldown_seconds,
            due_only=due_only,
        )
