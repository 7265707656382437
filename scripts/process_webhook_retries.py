"""
Webhook retry batch - one run of the retry processor, for cron.

Use when the in-process retry worker is disabled (RETRY_WORKER_ENABLED=false).

Usage:
    python -m scripts.process_webhook_retries            # due retries only
    python -m scripts.process_webhook_retries --all      # ignore remaining backoff

Crontab (every 5 minutes):
    */5 * * * * cd /srv/cameo-webhooks && python -m scripts.process_webhook_retries

Exits 0 when the batch ran (even if some events failed again), 1 on crash.
"""
import argparse
import asyncio
import logging
import sys

from cameo_webhooks.config import get_settings
from cameo_webhooks.container import build_container
from cameo_webhooks.utils.redis_client import close_redis

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def run(due_only: bool = True) -> int:
    container = build_container(get_settings())
    try:
        result = await container.retry_processor.process_retryable_webhooks(due_only=due_only)
    except Exception as e:
        logger.error("Webhook retry processing failed: %s", str(e), exc_info=True)
        return 1
    finally:
        await container.aclose()
        await close_redis()

    if result.skipped:
        logger.info("Another retry batch is running - nothing to do")
        return 0

    logger.info(
        "Webhook retry processing completed: processed=%d succeeded=%d failed=%d reclaimed=%d",
        result.processed, result.succeeded, result.failed, result.reclaimed,
    )
    if result.failed:
        logger.warning("%d webhooks failed during retry processing", result.failed)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run one webhook retry batch")
    parser.add_argument(
        "--all", action="store_true",
        help="Retry every failed event now, ignoring remaining backoff",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(run(due_only=not args.all)))


if __name__ == "__main__":
    main()
