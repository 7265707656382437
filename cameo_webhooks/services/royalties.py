"""
Royalty payouts - Stripe Connect transfers for paid orders.

Payout amounts come from the marketplace; this module only moves money.
All Stripe calls are synchronous and run via run_in_executor to avoid blocking
the asyncio event loop. Every transfer carries an idempotency key derived from
the order and recipient, so re-running a webhook never pays twice.
"""
import asyncio
import logging
from typing import Optional

from cameo_webhooks.config import get_settings
from cameo_webhooks.services.marketplace import MarketplaceClient

logger = logging.getLogger(__name__)

# Stripe rejects tiny transfers; anything below stays with the platform balance
MIN_TRANSFER_AMOUNT_CENTS = 50

# Stripe transfer event -> marketplace transfer status
TRANSFER_STATUS_MAP = {
    "created": "PROCESSING",
    "paid": "COMPLETED",
    "failed": "FAILED",
    "reversed": "FAILED",
}


def _get_stripe():
    """Get configured Stripe module. Raises if not configured."""
    import stripe
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise ValueError("Stripe secret key not configured")
    stripe.api_key = settings.stripe_secret_key
    stripe.max_network_retries = 1
    return stripe


async def _run_sync(func, *args, **kwargs):
    """Run a synchronous Stripe SDK call in the default thread pool executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def transfer_idempotency_key(order_id: str, payout: dict) -> str:
    return f"royalty:{order_id}:{payout.get('recipient_type')}:{payout.get('recipient_id')}"


class RoyaltyService:
    def __init__(self, marketplace: MarketplaceClient):
        self.marketplace = marketplace

    async def process_order_royalties(self, order_id: str) -> list[str]:
        """
        Create a transfer for every unpaid payout on the order.
        Returns the Stripe transfer ids created in this run.
        """
        payouts = await self.marketplace.get_order_payouts(order_id)
        created: list[str] = []

        for payout in payouts:
            if payout.get("stripe_transfer_id"):
                continue
            transfer_id = await self._create_transfer(order_id, payout)
            if transfer_id:
                created.append(transfer_id)

        logger.info(
            "Royalties processed for order %s: %d transfer(s) created",
            order_id, len(created),
        )
        return created

    async def _create_transfer(self, order_id: str, payout: dict) -> Optional[str]:
        amount = int(payout.get("amount_cents") or 0)
        destination = payout.get("stripe_account_id")
        recipient = f"{payout.get('recipient_type')}:{payout.get('recipient_id')}"

        if not destination:
            logger.info("Skipping payout to %s for order %s: no connected account", recipient, order_id)
            return None
        if amount < MIN_TRANSFER_AMOUNT_CENTS:
            logger.info(
                "Skipping payout to %s for order %s: %d cents below minimum",
                recipient, order_id, amount,
            )
            return None

        stripe = _get_stripe()
        transfer = await _run_sync(
            stripe.Transfer.create,
            amount=amount,
            currency=payout.get("currency") or "usd",
            destination=destination,
            transfer_group=order_id,
            metadata={
                "order_id": order_id,
                "recipient_type": payout.get("recipient_type"),
                "recipient_id": payout.get("recipient_id"),
            },
            idempotency_key=transfer_idempotency_key(order_id, payout),
        )
        await self.marketplace.record_transfer(order_id, payout, transfer.id)
        logger.info("Transfer %s created: %d cents to %s", transfer.id, amount, recipient)
        return transfer.id

    async def handle_transfer_update(self, stripe_transfer_id: str, stripe_status: str) -> Optional[str]:
        """Mirror a Stripe transfer event onto the marketplace transfer record."""
        status = TRANSFER_STATUS_MAP.get(stripe_status, "PROCESSING")
        updated = await self.marketplace.update_transfer_status(stripe_transfer_id, status)
        if updated is None:
            logger.info("Transfer %s not found in marketplace", stripe_transfer_id)
            return None
        logger.info("Updated transfer %s status to %s", stripe_transfer_id, status)
        return status
