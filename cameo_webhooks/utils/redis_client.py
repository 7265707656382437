"""
Shared Redis connection - used for the retry batch lock, alert cooldowns
and worker heartbeats.
"""
import logging

logger = logging.getLogger(__name__)

KEY_PREFIX = "cameo:webhooks"

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from cameo_webhooks.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close the shared connection (application shutdown)."""
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except Exception as e:
            logger.debug("Redis close failed: %s", str(e))
        _redis_client = None


def make_key(*parts: str) -> str:
    return ":".join((KEY_PREFIX,) + parts)
