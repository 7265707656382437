"""
Webhook processing wrapper - the single path every inbound event takes.

record -> processing -> handler -> completed | failed/dead_letter

Handler errors are recorded against the event and then re-raised unchanged;
the caller decides how to answer the provider. Handlers may run more than once
across retries and must be idempotent.
"""
import logging
from typing import Any, Awaitable, Callable, Optional

from cameo_webhooks.models.webhook_event import WebhookEvent, WebhookStatus
from cameo_webhooks.services.errors import DuplicateWebhookError
from cameo_webhooks.services.event_store import EventId, WebhookEventStore
from cameo_webhooks.services.retry_manager import RetryManager
from cameo_webhooks.utils.logging import get_correlation_id, webhook_log_context
from cameo_webhooks.utils.metrics import Timer

logger = logging.getLogger(__name__)

Handler = Callable[[], Awaitable[Any]]


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class WebhookProcessor:
    def __init__(self, store: WebhookEventStore, retry_manager: RetryManager):
        self.store = store
        self.retry_manager = retry_manager

    async def process(
        self,
        source: str,
        event_type: str,
        payload: dict,
        handler: Handler,
        signature: Optional[str] = None,
        provider_event_id: Optional[str] = None,
    ) -> Any:
        """
        Record an inbound event and run its handler once.
        Returns the handler result; re-raises the handler's exception after
        recording the failure.
        """
        event, created = await self.store.create(
            source,
            event_type,
            payload,
            signature=signature,
            provider_event_id=provider_event_id,
            correlation_id=get_correlation_id(),
        )

        if not created:
            if event.status != WebhookStatus.FAILED:
                logger.info(
                    "Duplicate webhook delivery ignored: source=%s provider_event_id=%s status=%s",
                    source, provider_event_id, event.status,
                    extra={"webhook_id": str(event.id), "source": source},
                )
                raise DuplicateWebhookError(event.id, event.status)
            # Provider redelivery of a failed event counts as a retry attempt
            await self.retry_manager.retry_webhook(event.id)

        return await self._attempt(event, handler)

    async def reprocess(self, event_id: EventId, handler: Handler) -> Any:
        """Run another attempt for an existing failed or pending event."""
        event = await self.store.get(event_id)
        if event.status == WebhookStatus.FAILED:
            event = await self.retry_manager.retry_webhook(event.id)
        return await self._attempt(event, handler)

    async def _attempt(self, event: WebhookEvent, handler: Handler) -> Any:
        with webhook_log_context(event):
            await self.store.mark_processing(event.id)
            timer = Timer().start()

            try:
                result = await handler()
            except Exception as e:
                decision = await self.retry_manager.mark_failed(event.id, _error_message(e))
                if decision.should_retry:
                    logger.info(
                        "Webhook %s will be retried after %dms",
                        str(event.id)[:8], decision.retry_after_ms,
                        extra={"retry_count": decision.retry_count},
                    )
                raise

            await self.store.mark_completed(event.id)
            logger.info(
                "Webhook processed: %s:%s in %dms",
                event.source, event.event_type, timer.stop(),
                extra={"status": WebhookStatus.COMPLETED},
            )
            return result
