"""
Admin webhook endpoints - monitoring, manual retries and dead letter review.
All routes require an admin bearer token.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from cameo_webhooks.api.deps import get_container, get_current_admin
from cameo_webhooks.container import Container
from cameo_webhooks.models.webhook_event import WebhookSource, WebhookStatus
from cameo_webhooks.services.errors import InvalidTransitionError, WebhookEventNotFoundError
from cameo_webhooks.services.monitor import (
    get_dead_letter_queue,
    get_recent_failures,
    get_webhook_stats,
    serialize_dead_letter,
    serialize_event,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin/webhooks", tags=["admin"])

DEFAULT_STATS_WINDOW = timedelta(hours=24)


def _check_source(source: Optional[str]) -> Optional[str]:
    if source is not None and source not in WebhookSource.ALL:
        raise HTTPException(status_code=400, detail=f"Unknown source: {source}")
    return source


@router.get("/stats")
async def webhook_stats(
    source: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    admin: str = Depends(get_current_admin),
    container: Container = Depends(get_container),
):
    """Counts by status. Defaults to the last 24 hours."""
    _check_source(source)
    if start is None and end is None:
        end = datetime.now(timezone.utc)
        start = end - DEFAULT_STATS_WINDOW
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must be before end")

    stats = await get_webhook_stats(container.store, source=source, start=start, end=end)
    return {
        "stats": stats,
        "source": source,
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
    }


@router.get("/failures")
async def webhook_failures(
    limit: int = Query(50, ge=1, le=500),
    admin: str = Depends(get_current_admin),
    container: Container = Depends(get_container),
):
    failures = await get_recent_failures(container.store, limit=limit)
    return {"failures": failures, "count": len(failures)}


@router.get("/dead-letter")
async def dead_letter_queue(
    include_reviewed: bool = Query(True),
    admin: str = Depends(get_current_admin),
    container: Container = Depends(get_container),
):
    entries = await get_dead_letter_queue(container.store, include_reviewed=include_reviewed)
    return {"dead_letter": entries, "count": len(entries)}


@router.get("/retryable")
async def retryable_webhooks(
    limit: int = Query(50, ge=1, le=500),
    admin: str = Depends(get_current_admin),
    container: Container = Depends(get_container),
):
    events = await container.retry_manager.list_retryable(max_batch=limit)
    return {"retryable": [serialize_event(e) for e in events], "count": len(events)}


@router.post("/retry")
async def retry_webhook(
    payload: dict = Body(...),
    admin: str = Depends(get_current_admin),
    container: Container = Depends(get_container),
):
    """Re-drive one failed event through its handler now."""
    webhook_id = payload.get("webhook_id")
    if not webhook_id:
        raise HTTPException(status_code=400, detail="webhook_id is required")

    try:
        event = await container.store.get(webhook_id)
    except WebhookEventNotFoundError:
        raise HTTPException(status_code=404, detail="Webhook event not found")

    if event.status != WebhookStatus.FAILED:
        raise HTTPException(
            status_code=409,
            detail=f"Only failed webhooks can be retried (status={event.status})",
        )

    logger.info("Admin %s retrying webhook %s", admin, str(event.id)[:8])
    handler = container.registry.bind(event.source, event.event_type, event.payload)
    try:
        await container.processor.reprocess(event.id, handler)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        refreshed = await container.store.get(event.id)
        return {
            "success": False,
            "webhook": serialize_event(refreshed),
            "error": str(e),
        }

    refreshed = await container.store.get(event.id)
    return {"success": True, "webhook": serialize_event(refreshed)}


@router.post("/retry-all")
async def retry_all_webhooks(
    admin: str = Depends(get_current_admin),
    container: Container = Depends(get_container),
):
    """Re-drive every failed event now, ignoring remaining backoff."""
    logger.info("Admin %s triggered retry of all failed webhooks", admin)
    result = await container.retry_processor.process_retryable_webhooks(due_only=False)
    return {"success": True, "retried_count": result.processed, **result.to_dict()}


@router.post("/process-retries")
async def process_retries(
    admin: str = Depends(get_current_admin),
    container: Container = Depends(get_container),
):
    """Run one scheduled retry batch now (same as the worker tick)."""
    logger.info("Admin %s triggered a retry batch", admin)
    result = await container.retry_processor.process_retryable_webhooks()
    return {"success": True, **result.to_dict()}


@router.post("/dead-letter/{entry_id}/review")
async def review_dead_letter(
    entry_id: str,
    payload: Optional[dict] = Body(None),
    admin: str = Depends(get_current_admin),
    container: Container = Depends(get_container),
):
    note = (payload or {}).get("note")
    try:
        entry = await container.store.mark_dead_letter_reviewed(entry_id, reviewed_by=admin, note=note)
    except WebhookEventNotFoundError:
        raise HTTPException(status_code=404, detail="Dead letter entry not found")

    logger.info("Admin %s reviewed dead letter entry %s", admin, str(entry.id)[:8])
    return {"success": True, "entry": serialize_dead_letter(entry)}
