"""
Redis distributed locks - keeps overlapping retry batches from re-driving
the same events. Uses Redis SET NX with TTL for automatic expiration.
"""
import logging
import uuid
from contextlib import asynccontextmanager

from cameo_webhooks.utils.redis_client import get_redis, make_key

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 300


class LockNotAcquiredError(Exception):
    """Raised when another holder owns the lock."""
    pass


@asynccontextmanager
async def distributed_lock(name: str, ttl: int = LOCK_TTL_SECONDS):
    """
    Acquire a non-blocking distributed lock.

    Usage:
        async with distributed_lock("retry_batch"):
            # only one holder at a time
    """
    lock_key = make_key("lock", name)
    lock_value = uuid.uuid4().hex  # Unique value to ensure we only release our own lock

    acquired = await _acquire_lock(lock_key, lock_value, ttl)
    if not acquired:
        raise LockNotAcquiredError(f"Lock {name} is held by another process")
    try:
        yield
    finally:
        await _release_lock(lock_key, lock_value)


async def _acquire_lock(key: str, value: str, ttl: int) -> bool:
    try:
        redis = await get_redis()
        was_set = await redis.set(key, value, nx=True, ex=ttl)
        return bool(was_set)
    except Exception as e:
        # Redis failure should not block retries
        logger.warning("Redis lock error for %s: %s. Proceeding without lock.", key, str(e))
        return True


async def _release_lock(key: str, value: str) -> None:
    """Release a Redis lock only if we still own it (compare-and-delete)."""
    try:
        redis = await get_redis()

        lua_script = """
        if redis.call('get', KEYS[1]) == ARGV[1] then
            return redis.call('del', KEYS[1])
        else
            return 0
        end
        """
        await redis.eval(lua_script, 1, key, value)
    except Exception as e:
        logger.warning("Redis lock release error for %s: %s", key, str(e))
