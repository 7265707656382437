"""
Retry worker - re-drives failed webhook events through the processing wrapper.
Runs every retry_poll_interval_seconds; also callable on demand from the admin
API and the cron script. Handlers are re-derived from the registry by
(source, event_type) since handler closures are not persisted. Events left
PENDING past the stuck timeout never got their attempt and are re-driven too.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from cameo_webhooks.models.webhook_event import WebhookEvent, WebhookStatus
from cameo_webhooks.services.handler_registry import HandlerRegistry
from cameo_webhooks.services.processing import WebhookProcessor
from cameo_webhooks.services.retry_manager import RetryManager
from cameo_webhooks.utils.alerting import AlertType, send_alert
from cameo_webhooks.utils.locks import LockNotAcquiredError, distributed_lock
from cameo_webhooks.utils.logging import webhook_log_context
from cameo_webhooks.utils.redis_client import get_redis, make_key

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 300
BATCH_SIZE = 10
STUCK_PROCESSING_TIMEOUT_SECONDS = 600
STUCK_PROCESSING_ERROR = "processing timed out"
LOCK_NAME = "webhook_retry_batch"


@dataclass
class RetryBatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    reclaimed: int = 0
    skipped: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class RetryProcessor:
    def __init__(
        self,
        processor: WebhookProcessor,
        retry_manager: RetryManager,
        registry: HandlerRegistry,
        batch_size: int = BATCH_SIZE,
        stuck_timeout_seconds: int = STUCK_PROCESSING_TIMEOUT_SECONDS,
    ):
        self.processor = processor
        self.retry_manager = retry_manager
        self.registry = registry
        self.batch_size = batch_size
        self.stuck_timeout_seconds = stuck_timeout_seconds

    async def process_retryable_webhooks(self, due_only: bool = True) -> RetryBatchResult:
        """
        Run one retry batch. A failing event never aborts the batch.
        due_only=False also takes failed events still inside their backoff window
        and is not capped at batch_size: every retryable event gets one attempt.
        Returns counts of events attempted / succeeded / failed again.
        """
        try:
            async with distributed_lock(LOCK_NAME):
                return await self._run_batch(due_only)
        except LockNotAcquiredError:
            logger.info("Retry batch already running elsewhere - skipping")
            return RetryBatchResult(skipped=True)

    async def _run_batch(self, due_only: bool) -> RetryBatchResult:
        result = RetryBatchResult()
        result.reclaimed = await self.sweep_stale_processing()

        stranded = await self.retry_manager.store.list_stale_processing(
            self.stuck_timeout_seconds, status=WebhookStatus.PENDING,
        )
        if stranded:
            logger.warning("Re-driving %d webhook(s) stranded in pending", len(stranded))

        max_batch = self.batch_size if due_only else None
        events = await self.retry_manager.list_retryable(max_batch=max_batch, due_only=due_only)
        for event in [*stranded, *events]:
            result.processed += 1
            if await self._retry_one(event):
                result.succeeded += 1
            else:
                result.failed += 1

        if result.processed:
            logger.info(
                "Retry batch complete: %d processed, %d succeeded, %d failed",
                result.processed, result.succeeded, result.failed,
            )
        return result

    async def _retry_one(self, event: WebhookEvent) -> bool:
        with webhook_log_context(event):
            try:
                handler = self.registry.bind(event.source, event.event_type, event.payload)
                await self.processor.reprocess(event.id, handler)
                logger.info("Retry succeeded for webhook %s", str(event.id)[:8])
                return True
            except Exception as e:
                logger.warning(
                    "Retry failed for webhook %s (attempt %d): %s",
                    str(event.id)[:8], event.retry_count + 1, str(e),
                )
                return False

    async def sweep_stale_processing(self) -> int:
        """Fail PROCESSING events whose attempt died mid-flight. Returns count reclaimed."""
        stale = await self.retry_manager.store.list_stale_processing(self.stuck_timeout_seconds)
        reclaimed = 0
        for event in stale:
            try:
                await self.retry_manager.mark_failed(event.id, STUCK_PROCESSING_ERROR)
                reclaimed += 1
            except Exception as e:
                logger.warning("Could not reclaim webhook %s: %s", str(event.id)[:8], str(e))

        if reclaimed:
            logger.warning("Reclaimed %d webhook(s) stuck in processing", reclaimed)
            await send_alert(
                AlertType.WEBHOOK_STUCK_PROCESSING,
                f"{reclaimed} webhook event(s) were stuck in processing for over "
                f"{self.stuck_timeout_seconds}s and have been failed for retry",
                severity="warning",
            )
        return reclaimed


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        redis = await get_redis()
        await redis.set(
            make_key("worker_health", "retry_worker"),
            datetime.now(timezone.utc).isoformat(),
            ex=POLL_INTERVAL_SECONDS * 2,
        )
    except Exception as e:
        logger.debug("Retry worker heartbeat failed: %s", str(e))


async def run_retry_worker(retry_processor: RetryProcessor, poll_interval: int = POLL_INTERVAL_SECONDS):
    """Main retry worker loop. Runs until cancelled."""
    logger.info("Retry worker started (interval=%ds)", poll_interval)

    while True:
        try:
            await retry_processor.process_retryable_webhooks()
        except Exception as e:
            logger.error("Retry worker error: %s", str(e), exc_info=True)
            await send_alert(AlertType.RETRY_BATCH_FAILED, f"Retry batch crashed: {e}")

        await _heartbeat()
        await asyncio.sleep(poll_interval)
