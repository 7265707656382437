"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis)
- GET /health/deep  - readiness plus retry worker heartbeat and queue backlog
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cameo_webhooks.api.deps import get_container
from cameo_webhooks.container import Container
from cameo_webhooks.database import get_db
from cameo_webhooks.models.webhook_event import WebhookStatus
from cameo_webhooks.utils.redis_client import get_redis, make_key

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity.
    Redis being down degrades retries and alert cooldowns but not ingestion.
    """
    checks = {
        "database": (await _check_database(db))["healthy"],
        "redis": (await _check_redis())["healthy"],
    }
    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check(
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Deep health check - dependencies, retry worker heartbeat, failure backlog."""
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
        "retry_worker": await _check_retry_worker(),
        "backlog": await _check_backlog(container),
    }

    critical_healthy = checks["database"]["healthy"] and checks["redis"]["healthy"]
    all_healthy = all(c.get("healthy", False) for c in checks.values())
    if all_healthy:
        status = "healthy"
    elif critical_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    return {
        "status": status,
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


async def _check_database(db: AsyncSession) -> dict:
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"healthy": True}
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    try:
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_retry_worker() -> dict:
    try:
        redis = await get_redis()
        heartbeat = await redis.get(make_key("worker_health", "retry_worker"))
        return {"healthy": heartbeat is not None, "last_heartbeat": heartbeat}
    except Exception as e:
        return {"healthy": False, "error": str(e)}


async def _check_backlog(container: Container) -> dict:
    try:
        counts = await container.store.count_by_status()
        return {
            "healthy": True,
            "failed": counts[WebhookStatus.FAILED],
            "dead_letter": counts[WebhookStatus.DEAD_LETTER],
            "processing": counts[WebhookStatus.PROCESSING],
        }
    except Exception as e:
        logger.error("Backlog health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}
