"""
Provider webhook handlers - the business effect of each event.

Handlers receive the persisted payload (Stripe: data.object, fal/Replicate:
the raw callback body). They can run more than once for the same event across
retries, so every effect is idempotent on the marketplace side or guarded by a
Stripe idempotency key. Raising marks the attempt failed.
"""
import logging
from typing import Optional

import httpx

from cameo_webhooks.models.webhook_event import WebhookSource
from cameo_webhooks.schemas.webhook_payloads import (
    FAL_EVENT_TYPE,
    REPLICATE_EVENT_TYPE,
    FalTrainingPayload,
    ReplicatePredictionPayload,
)
from cameo_webhooks.services.handler_registry import HandlerRegistry
from cameo_webhooks.services.marketplace import MarketplaceClient
from cameo_webhooks.services.royalties import RoyaltyService

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 30.0


class WebhookHandlers:
    def __init__(
        self,
        marketplace: MarketplaceClient,
        royalties: RoyaltyService,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.marketplace = marketplace
        self.royalties = royalties
        self._http = http_client

    # === STRIPE ===

    async def checkout_session_completed(self, session: dict) -> Optional[dict]:
        """Mark the order paid (releases the unwatermarked content), then pay royalties."""
        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        if not payment_intent:
            logger.warning("Checkout session %s completed without a payment intent", session.get("id"))
            return None

        order = await self.marketplace.mark_order_paid(session["id"], payment_intent)
        if order is None:
            logger.warning("No order found for checkout session %s", session.get("id"))
            return None

        order_id = str(order["id"])
        logger.info("Order %s marked as paid, processing royalties", order_id)
        transfers = await self.royalties.process_order_royalties(order_id)
        return {"order_id": order_id, "transfers": transfers}

    async def payment_intent_succeeded(self, payment_intent: dict) -> None:
        # Order fulfilment happens on checkout.session.completed
        logger.info("Payment intent succeeded: %s", payment_intent.get("id"))

    async def transfer_updated(self, transfer: dict, stripe_status: str) -> Optional[str]:
        return await self.royalties.handle_transfer_update(transfer["id"], stripe_status)

    async def transfer_created(self, transfer: dict) -> Optional[str]:
        return await self.transfer_updated(transfer, "created")

    async def transfer_paid(self, transfer: dict) -> Optional[str]:
        return await self.transfer_updated(transfer, "paid")

    async def transfer_failed(self, transfer: dict) -> Optional[str]:
        return await self.transfer_updated(transfer, "failed")

    async def transfer_reversed(self, transfer: dict) -> Optional[str]:
        return await self.transfer_updated(transfer, "reversed")

    async def account_updated(self, account: dict) -> bool:
        onboarding_complete = bool(
            account.get("charges_enabled")
            and account.get("payouts_enabled")
            and account.get("details_submitted")
        )
        updated = await self.marketplace.update_account_onboarding(account["id"], onboarding_complete)
        if updated is None:
            logger.info("Connect account %s not linked to a creator or store", account["id"])
        else:
            logger.info("Account %s onboarding complete: %s", account["id"], onboarding_complete)
        return onboarding_complete

    # === FAL (LoRA training) ===

    async def training_update(self, payload: dict) -> str:
        data = FalTrainingPayload.model_validate({**payload, "source": WebhookSource.FAL})

        creator = await self.marketplace.find_creator_by_training_job(data.request_id)
        if creator is None:
            raise LookupError(f"Creator not found for training job {data.request_id}")
        creator_id = str(creator["id"])

        status = data.status.upper()
        if status == "COMPLETED":
            lora_url = data.output.lora_url if data.output else None
            if not lora_url:
                await self.marketplace.update_creator_model_status(creator_id, "FAILED")
                raise ValueError("Completed training webhook missing LoRA URL")
            await self.marketplace.update_creator_model_status(
                creator_id,
                "READY",
                lora_url=lora_url,
                trigger_word=data.output.trigger_word,
            )
            logger.info("LoRA training completed for creator %s", creator_id)
            return "READY"

        if status == "FAILED":
            await self.marketplace.update_creator_model_status(creator_id, "FAILED")
            logger.warning("LoRA training failed for creator %s: %s", creator_id, data.error)
            return "FAILED"

        logger.info("Training job %s status %s - nothing to do", data.request_id, data.status)
        return status

    # === REPLICATE (generations) ===

    async def prediction_update(self, payload: dict) -> Optional[str]:
        data = ReplicatePredictionPayload.model_validate({**payload, "source": WebhookSource.REPLICATE})

        generation = await self.marketplace.find_processing_generation(data.id)
        if generation is None:
            # Already finished or never ours - a late or repeated callback
            logger.info("No processing generation for prediction %s", data.id)
            return None
        generation_id = str(generation["id"])

        if data.status == "succeeded":
            image_url = data.first_output_url()
            if not image_url:
                raise ValueError(f"Prediction {data.id} succeeded without output")
            image = await self._download(image_url)
            await self.marketplace.complete_generation(generation_id, image)
            logger.info("Generation %s completed", generation_id)
            return "COMPLETED"

        if data.status in ("failed", "canceled"):
            await self.marketplace.fail_generation(generation_id, data.error)
            logger.info("Generation %s failed: %s", generation_id, data.error)
            return "FAILED"

        return None

    async def _download(self, url: str) -> bytes:
        if self._http is not None:
            response = await self._http.get(url, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT) as client:
                response = await client.get(url, follow_redirects=True)
        if response.status_code != 200:
            raise RuntimeError(f"Failed to download generated image: HTTP {response.status_code}")
        return response.content


def build_handler_registry(handlers: WebhookHandlers) -> HandlerRegistry:
    """Registry with every provider event the marketplace reacts to."""
    registry = HandlerRegistry()

    registry.add(WebhookSource.STRIPE, "checkout.session.completed", handlers.checkout_session_completed)
    registry.add(WebhookSource.STRIPE, "payment_intent.succeeded", handlers.payment_intent_succeeded)
    registry.add(WebhookSource.STRIPE, "transfer.created", handlers.transfer_created)
    registry.add(WebhookSource.STRIPE, "transfer.paid", handlers.transfer_paid)
    registry.add(WebhookSource.STRIPE, "transfer.failed", handlers.transfer_failed)
    registry.add(WebhookSource.STRIPE, "transfer.reversed", handlers.transfer_reversed)
    registry.add(WebhookSource.STRIPE, "account.updated", handlers.account_updated)

    registry.add(WebhookSource.FAL, FAL_EVENT_TYPE, handlers.training_update)
    registry.add(WebhookSource.REPLICATE, REPLICATE_EVENT_TYPE, handlers.prediction_update)

    return registry
