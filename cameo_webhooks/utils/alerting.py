"""
Critical alerting - surfaces dead-lettered webhooks, signature failures and
stuck events to operators.

Alert channels:
1. Structured log (always) - at ERROR level
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL env var

Rate limiting: Per-type cooldowns to prevent alert storms.
Cooldowns stored in Redis, with an in-memory fallback when Redis is down.
"""
import logging
import time
from typing import Optional

from cameo_webhooks.utils.redis_client import get_redis, make_key

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300  # 5 minutes (default)

ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "webhook_signature_invalid": 900,
    "webhook_stuck_processing": 3600,
}

# In-memory fallback when Redis is down (alert_type -> expiry timestamp)
_local_cooldowns: dict[str, float] = {}


class AlertType:
    """Alert type constants."""
    DEAD_LETTER_EXHAUSTED = "dead_letter_exhausted"
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    WEBHOOK_STUCK_PROCESSING = "webhook_stuck_processing"
    RETRY_BATCH_FAILED = "retry_batch_failed"


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
) -> None:
    """
    Send an alert through all configured channels.
    Rate-limited per alert type to prevent alert storms.
    """
    if not await _acquire_cooldown(alert_type):
        return

    from cameo_webhooks.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    await _send_webhook_alert(alert_type, message, cid, extra, severity)


async def _acquire_cooldown(alert_type: str) -> bool:
    """Atomically check-and-set alert cooldown. Returns True if alert should be sent."""
    cooldown = _get_cooldown_seconds(alert_type)

    try:
        redis = await get_redis()
        acquired = await redis.set(make_key("alert_cooldown", alert_type), "1", nx=True, ex=cooldown)
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        expiry = _local_cooldowns.get(alert_type, 0)
        if now < expiry:
            return False
        _local_cooldowns[alert_type] = now + cooldown
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
    severity: str = "error",
) -> None:
    """Send alert to configured webhook (Discord/Slack)."""
    try:
        from cameo_webhooks.config import get_settings
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        import httpx

        severity_emoji = {"critical": "\U0001f6a8", "error": "❌", "warning": "⚠️"}.get(
            severity, "ℹ️"
        )
        content = f"{severity_emoji} **{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        if extra:
            for key, val in extra.items():
                content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Alert sending failure should never crash the system
        logger.warning("Failed to send webhook alert: %s", str(e))
