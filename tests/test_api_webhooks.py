"""
Tests for cameo_webhooks/api/webhooks.py - provider webhook endpoints.

Covers:
- Stripe / fal / Replicate happy paths through the processing wrapper
- Signature failures (missing header, bad signature, unconfigured secret)
- Malformed bodies and payloads
- Handler failures (500 + FAILED record)
- Duplicate deliveries
- fal endpoint verification
"""
import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cameo_webhooks.models import WebhookStatus
from cameo_webhooks.services.webhook_handlers import WebhookHandlers, build_handler_registry

STRIPE_SECRET = "whsec_test_secret"
FAL_SECRET = "fal_test_secret"
REPLICATE_SECRET = "replicate_test_secret"

# ---------------------------------------------------------------------------
# Signed request helpers
# ---------------------------------------------------------------------------


def _stripe_event(event_id="evt_1", event_type="checkout.session.completed", obj=None) -> bytes:
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": obj or {"id": "cs_1", "payment_intent": "pi_1"}},
    }).encode()


def _stripe_headers(body: bytes, secret: str = STRIPE_SECRET) -> dict:
    ts = int(time.time())
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={ts},v1={digest}", "Content-Type": "application/json"}


def _fal_headers(body: bytes, secret: str = FAL_SECRET) -> dict:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return {"X-Fal-Signature": f"sha256={digest}", "Content-Type": "application/json"}


def _replicate_headers(body: bytes, secret: str = REPLICATE_SECRET) -> dict:
    digest = hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    return {"Replicate-Signature": f"sha1={digest}", "Content-Type": "application/json"}


class HandlerError(Exception):
    pass


@pytest.fixture(autouse=True)
def no_alerts():
    with (
        patch("cameo_webhooks.services.retry_manager.send_alert", new_callable=AsyncMock),
        patch("cameo_webhooks.api.webhooks.send_alert", new_callable=AsyncMock) as signature_alert,
    ):
        yield signature_alert


async def _failed_events(store):
    return await store.list_retryable(max_batch=100, max_retries=100, due_only=False)


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------


class TestStripeWebhook:
    async def test_valid_event_completes(self, client, registry, store):
        """A signed event runs its handler and ends COMPLETED."""
        handler = AsyncMock(return_value={"order_id": "ord_1"})
        registry.add("stripe", "checkout.session.completed", handler)
        body = _stripe_event()

        response = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))

        assert response.status_code == 200
        assert response.json() == {"received": True, "event_type": "checkout.session.completed"}
        handler.assert_awaited_once_with({"id": "cs_1", "payment_intent": "pi_1"})
        event = await store.find_by_provider_event("stripe", "evt_1")
        assert event.status == WebhookStatus.COMPLETED
        assert event.payload == {"id": "cs_1", "payment_intent": "pi_1"}
        assert event.signature.startswith("t=")

    async def test_unrouted_event_type_still_recorded(self, client, store):
        body = _stripe_event(event_type="customer.created", obj={"id": "cus_1"})
        response = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))
        assert response.status_code == 200
        event = await store.find_by_provider_event("stripe", "evt_1")
        assert event.status == WebhookStatus.COMPLETED

    async def test_invalid_signature_rejected_before_recording(self, client, registry, store, no_alerts):
        """A forged signature is 401 and leaves no trace in the ledger."""
        handler = AsyncMock()
        registry.add("stripe", "checkout.session.completed", handler)
        body = _stripe_event()

        response = await client.post(
            "/api/webhooks/stripe", content=body, headers=_stripe_headers(body, secret="whsec_wrong"),
        )

        assert response.status_code == 401
        handler.assert_not_called()
        assert await store.find_by_provider_event("stripe", "evt_1") is None
        no_alerts.assert_awaited_once()

    async def test_missing_signature_header(self, client, store):
        body = _stripe_event()
        response = await client.post(
            "/api/webhooks/stripe", content=body, headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing signature"
        assert await store.find_by_provider_event("stripe", "evt_1") is None

    async def test_malformed_json(self, client):
        body = b"{not json"
        response = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid JSON body"

    async def test_missing_required_fields(self, client, store):
        body = json.dumps({"id": "evt_1", "type": "checkout.session.completed"}).encode()
        response = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid webhook payload"
        assert await store.find_by_provider_event("stripe", "evt_1") is None

    async def test_handler_failure_returns_500_and_records_failure(self, client, registry, store):
        """The handler raises, the provider sees 500 and the event is FAILED."""
        registry.add("stripe", "transfer.paid", AsyncMock(side_effect=HandlerError("marketplace down")))
        body = _stripe_event(event_type="transfer.paid", obj={"id": "tr_1"})

        response = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))

        assert response.status_code == 500
        event = await store.find_by_provider_event("stripe", "evt_1")
        assert event.status == WebhookStatus.FAILED
        assert event.retry_count == 1
        assert event.error_message == "marketplace down"

    async def test_duplicate_delivery_is_acknowledged(self, client, registry):
        handler = AsyncMock()
        registry.add("stripe", "checkout.session.completed", handler)
        body = _stripe_event()

        first = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))
        second = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json() == {"received": True, "duplicate": True, "status": "completed"}
        handler.assert_awaited_once()

    async def test_redelivery_after_failure_retries(self, client, registry, store):
        handler = AsyncMock(side_effect=[HandlerError("first"), {"ok": True}])
        registry.add("stripe", "transfer.paid", handler)
        body = _stripe_event(event_type="transfer.paid", obj={"id": "tr_1"})

        first = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))
        second = await client.post("/api/webhooks/stripe", content=body, headers=_stripe_headers(body))

        assert first.status_code == 500
        assert second.status_code == 200
        event = await store.find_by_provider_event("stripe", "evt_1")
        assert event.status == WebhookStatus.COMPLETED
        assert await _failed_events(store) == []

    async def test_correlation_id_round_trip(self, client, store):
        body = _stripe_event(event_type="customer.created", obj={"id": "cus_1"})
        headers = {**_stripe_headers(body), "X-Correlation-ID": "cid-from-edge"}

        response = await client.post("/api/webhooks/stripe", content=body, headers=headers)

        assert response.headers["X-Correlation-ID"] == "cid-from-edge"
        event = await store.find_by_provider_event("stripe", "evt_1")
        assert event.correlation_id == "cid-from-edge"


class TestUnconfiguredSecret:
    async def test_development_accepts_unsigned(self, client, container, store):
        container.settings.stripe_webhook_secret = ""
        body = _stripe_event(event_type="customer.created", obj={"id": "cus_1"})

        response = await client.post(
            "/api/webhooks/stripe", content=body, headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert await store.find_by_provider_event("stripe", "evt_1") is not None

    async def test_production_rejects(self, client, container, store):
        container.settings.stripe_webhook_secret = ""
        container.settings.app_env = "production"
        body = _stripe_event()

        response = await client.post(
            "/api/webhooks/stripe", content=body, headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert await store.find_by_provider_event("stripe", "evt_1") is None


# ---------------------------------------------------------------------------
# fal.ai
# ---------------------------------------------------------------------------


class TestFalWebhook:
    async def test_training_callback(self, client, registry, store):
        handler = AsyncMock(return_value="READY")
        registry.add("fal", "training_update", handler)
        body = json.dumps({
            "request_id": "job_1",
            "status": "COMPLETED",
            "output": {"lora_url": "https://cdn.test/lora.safetensors"},
        }).encode()

        response = await client.post("/api/webhooks/fal", content=body, headers=_fal_headers(body))

        assert response.status_code == 200
        handler.assert_awaited_once()
        event = await store.find_by_provider_event("fal", "job_1:COMPLETED")
        assert event.status == WebhookStatus.COMPLETED
        assert event.event_type == "training_update"

    async def test_labelled_callback_updates_creator_model(self, client, container, store):
        marketplace = MagicMock()
        marketplace.find_creator_by_training_job = AsyncMock(return_value={"id": "cr_1"})
        marketplace.update_creator_model_status = AsyncMock(return_value={})
        container.registry = build_handler_registry(WebhookHandlers(marketplace, MagicMock()))
        body = json.dumps({
            "request_id": "req_1",
            "status": "COMPLETED",
            "event_type": "training.completed",
            "output": {"lora_url": "https://cdn.test/lora.safetensors", "trigger_word": "cameo_ava"},
        }).encode()

        response = await client.post("/api/webhooks/fal", content=body, headers=_fal_headers(body))

        assert response.status_code == 200
        marketplace.update_creator_model_status.assert_awaited_once_with(
            "cr_1", "READY", lora_url="https://cdn.test/lora.safetensors", trigger_word="cameo_ava",
        )
        event = await store.find_by_provider_event("fal", "req_1:COMPLETED")
        assert event.event_type == "training_update"
        assert event.payload["event_type"] == "training.completed"

    async def test_bad_signature(self, client):
        body = json.dumps({"request_id": "job_1", "status": "COMPLETED"}).encode()
        response = await client.post(
            "/api/webhooks/fal", content=body, headers=_fal_headers(body, secret="wrong"),
        )
        assert response.status_code == 401

    async def test_missing_request_id(self, client):
        body = json.dumps({"status": "COMPLETED"}).encode()
        response = await client.post("/api/webhooks/fal", content=body, headers=_fal_headers(body))
        assert response.status_code == 400

    async def test_verification_challenge(self, client):
        response = await client.get("/api/webhooks/fal", params={"challenge": "abc123"})
        assert response.status_code == 200
        assert response.json() == {"challenge": "abc123"}

    async def test_verification_liveness(self, client):
        response = await client.get("/api/webhooks/fal")
        assert response.status_code == 200
        assert "active" in response.json()["message"]


# ---------------------------------------------------------------------------
# Replicate
# ---------------------------------------------------------------------------


class TestReplicateWebhook:
    async def test_prediction_callback(self, client, registry, store):
        handler = AsyncMock(return_value="COMPLETED")
        registry.add("replicate", "prediction_update", handler)
        body = json.dumps({
            "id": "pred_1", "status": "succeeded", "output": ["https://replicate.test/out.jpg"],
        }).encode()

        response = await client.post("/api/webhooks/replicate", content=body, headers=_replicate_headers(body))

        assert response.status_code == 200
        event = await store.find_by_provider_event("replicate", "pred_1:succeeded")
        assert event.status == WebhookStatus.COMPLETED

    async def test_status_progression_recorded_separately(self, client, store):
        for status in ("processing", "succeeded"):
            body = json.dumps({"id": "pred_1", "status": status}).encode()
            response = await client.post(
                "/api/webhooks/replicate", content=body, headers=_replicate_headers(body),
            )
            assert response.status_code == 200
        assert await store.find_by_provider_event("replicate", "pred_1:processing") is not None
        assert await store.find_by_provider_event("replicate", "pred_1:succeeded") is not None

    async def test_sha256_signature_rejected(self, client):
        body = json.dumps({"id": "pred_1", "status": "succeeded"}).encode()
        digest = hmac.new(REPLICATE_SECRET.encode(), body, hashlib.sha256).hexdigest()
        response = await client.post(
            "/api/webhooks/replicate", content=body,
            headers={"Replicate-Signature": f"sha1={digest}"},
        )
        assert response.status_code == 401
