"""
Marketplace core API client - orders, creators, generations and transfers.

The webhook service never owns marketplace records; every business effect of a
webhook is a call into the core API. All calls share one httpx.AsyncClient
with the configured timeout. Non-2xx responses raise MarketplaceError so the
webhook attempt is recorded as failed and retried.
"""
import logging
from typing import Any, Optional

import httpx

from cameo_webhooks.config import Settings
from cameo_webhooks.services.errors import MarketplaceError

logger = logging.getLogger(__name__)


class MarketplaceClient:
    """Thin async client over the marketplace internal API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketplaceClient":
        return cls(
            settings.marketplace_api_url,
            api_key=settings.marketplace_api_key,
            timeout=settings.marketplace_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> Optional[Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise MarketplaceError(f"Marketplace {method} {path} failed: {e}") from e

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            raise MarketplaceError(
                f"Marketplace {method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    # === ORDERS / ROYALTIES ===

    async def mark_order_paid(self, checkout_session_id: str, payment_intent_id: str) -> Optional[dict]:
        """
        Mark the order for a checkout session paid and release its unwatermarked content.
        Returns the order, or None when no order matches the session.
        """
        return await self._request(
            "POST",
            f"/checkout-sessions/{checkout_session_id}/paid",
            allow_not_found=True,
            json={"payment_intent_id": payment_intent_id},
        )

    async def get_order_payouts(self, order_id: str) -> list[dict]:
        """
        Royalty/revenue splits for an order, computed by the marketplace.
        Each payout: {recipient_type, recipient_id, stripe_account_id,
        amount_cents, currency, stripe_transfer_id}.
        """
        data = await self._request("GET", f"/orders/{order_id}/payouts")
        return list(data.get("payouts", []))

    async def record_transfer(self, order_id: str, payout: dict, stripe_transfer_id: str) -> dict:
        return await self._request(
            "POST",
            f"/orders/{order_id}/transfers",
            json={
                "recipient_type": payout.get("recipient_type"),
                "recipient_id": payout.get("recipient_id"),
                "amount_cents": payout.get("amount_cents"),
                "stripe_transfer_id": stripe_transfer_id,
                "status": "PROCESSING",
            },
        )

    async def update_transfer_status(self, stripe_transfer_id: str, status: str) -> Optional[dict]:
        """Returns None when the transfer is unknown to the marketplace."""
        return await self._request(
            "PATCH",
            f"/transfers/{stripe_transfer_id}",
            allow_not_found=True,
            json={"status": status},
        )

    # === CONNECT ACCOUNTS ===

    async def update_account_onboarding(self, stripe_account_id: str, onboarding_complete: bool) -> Optional[dict]:
        """Sets the onboarding flag on the creator or store owning the account."""
        return await self._request(
            "PATCH",
            f"/connect-accounts/{stripe_account_id}",
            allow_not_found=True,
            json={"onboarding_complete": onboarding_complete},
        )

    # === CREATOR MODELS ===

    async def find_creator_by_training_job(self, job_id: str) -> Optional[dict]:
        return await self._request(
            "GET", "/creators", allow_not_found=True, params={"training_job_id": job_id},
        )

    async def update_creator_model_status(
        self,
        creator_id: str,
        status: str,
        lora_url: Optional[str] = None,
        trigger_word: Optional[str] = None,
    ) -> dict:
        body: dict[str, Any] = {"status": status}
        if lora_url:
            body["lora_url"] = lora_url
        if trigger_word:
            body["trigger_word"] = trigger_word
        return await self._request("PATCH", f"/creators/{creator_id}/model", json=body)

    # === GENERATIONS ===

    async def find_processing_generation(self, prediction_id: str) -> Optional[dict]:
        return await self._request(
            "GET",
            "/generations",
            allow_not_found=True,
            params={"prediction_id": prediction_id, "status": "PROCESSING"},
        )

    async def complete_generation(
        self,
        generation_id: str,
        image: bytes,
        content_type: str = "image/jpeg",
    ) -> dict:
        """Upload the generated image; the marketplace stores and watermarks it."""
        return await self._request(
            "POST",
            f"/generations/{generation_id}/image",
            files={"image": (f"{generation_id}.jpg", image, content_type)},
        )

    async def fail_generation(self, generation_id: str, error: Optional[str] = None) -> dict:
        return await self._request(
            "PATCH",
            f"/generations/{generation_id}",
            json={"status": "FAILED", "error": error},
        )
