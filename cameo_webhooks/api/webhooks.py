"""
Provider webhook endpoints - Stripe payments, fal.ai training, Replicate generations.

Request path (in order):
1. Signature header present and secret configured (400 otherwise)
2. Signature verified over the raw body (401 on mismatch)
3. JSON decoded and validated per source (400 on malformed payload)
4. Event recorded and handler run through the processing wrapper
   (200 on success or duplicate delivery, 500 when the handler raises)
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from cameo_webhooks.api.deps import get_container
from cameo_webhooks.container import Container
from cameo_webhooks.models.webhook_event import WebhookSource
from cameo_webhooks.schemas.webhook_payloads import parse_webhook_payload
from cameo_webhooks.services.errors import DuplicateWebhookError
from cameo_webhooks.utils.alerting import AlertType, send_alert
from cameo_webhooks.utils.webhook_signatures import (
    SIGNATURE_HEADERS,
    compute_payload_hash,
    verify_provider_signature,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


async def _verify_signature(source: str, request: Request, body: bytes, container: Container) -> Optional[str]:
    """Returns the raw signature header; raises HTTPException when the request must be rejected."""
    settings = container.settings
    signature = request.headers.get(SIGNATURE_HEADERS[source])
    secret = settings.webhook_secret_for(source)

    if not secret:
        if settings.app_env == "production":
            logger.error("%s webhook secret not configured - rejecting", source)
            raise HTTPException(status_code=400, detail="Webhook secret not configured")
        logger.warning(
            "%s webhook secret not configured - accepting unsigned webhook (env=%s)",
            source, settings.app_env,
        )
        return signature

    if not signature:
        logger.warning("Missing %s signature header", source)
        raise HTTPException(status_code=400, detail="Missing signature")

    check = verify_provider_signature(
        source, body, signature, secret, settings.signature_tolerance_seconds,
    )
    if not check.is_valid:
        client_ip = request.client.host if request.client else "unknown"
        logger.warning(
            "Invalid webhook signature: source=%s ip=%s error=%s",
            source, client_ip, check.error,
            extra={"source": source},
        )
        await send_alert(
            AlertType.WEBHOOK_SIGNATURE_INVALID,
            f"Invalid {source} webhook signature from {client_ip}: {check.error}",
            severity="warning",
        )
        raise HTTPException(status_code=401, detail="Invalid signature")
    return signature


async def _ingest(source: str, request: Request, container: Container) -> dict:
    body = await request.body()
    signature = await _verify_signature(source, request, body, container)

    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        parsed = parse_webhook_payload(source, data)
    except (ValidationError, ValueError) as e:
        logger.warning("Malformed %s webhook payload: %s", source, str(e)[:300])
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    log_extra = {
        "source": source,
        "event_type": parsed.event_type,
        "provider_event_id": parsed.provider_event_id,
    }
    logger.info(
        "Webhook received: %s:%s hash=%s",
        source, parsed.event_type, compute_payload_hash(body)[:12],
        extra=log_extra,
    )

    handler = container.registry.bind(source, parsed.event_type, parsed.payload)
    try:
        await container.processor.process(
            source,
            parsed.event_type,
            parsed.payload,
            handler,
            signature=signature,
            provider_event_id=parsed.provider_event_id,
        )
    except DuplicateWebhookError as e:
        return {"received": True, "duplicate": True, "status": e.status}
    except Exception as e:
        logger.error(
            "Webhook processing failed: %s:%s: %s",
            source, parsed.event_type, str(e),
            exc_info=True, extra=log_extra,
        )
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return {"received": True, "event_type": parsed.event_type}


@router.post("/stripe")
async def stripe_webhook(request: Request, container: Container = Depends(get_container)):
    """Stripe payment and Connect events."""
    return await _ingest(WebhookSource.STRIPE, request, container)


@router.post("/fal")
async def fal_webhook(request: Request, container: Container = Depends(get_container)):
    """fal.ai LoRA training callbacks."""
    return await _ingest(WebhookSource.FAL, request, container)


@router.get("/fal")
async def fal_webhook_verification(challenge: Optional[str] = None):
    """Endpoint verification: echoes a challenge, otherwise reports liveness."""
    if challenge:
        return {"challenge": challenge}
    return {
        "message": "fal webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/replicate")
async def replicate_webhook(request: Request, container: Container = Depends(get_container)):
    """Replicate prediction callbacks."""
    return await _ingest(WebhookSource.REPLICATE, request, container)
