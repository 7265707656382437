"""
Tests for cameo_webhooks/services/webhook_handlers.py - provider business handlers.
"""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from cameo_webhooks.services.webhook_handlers import WebhookHandlers, build_handler_registry


@pytest.fixture
def marketplace():
    mock = MagicMock()
    mock.mark_order_paid = AsyncMock(return_value={"id": "ord_1", "status": "PAID"})
    mock.update_account_onboarding = AsyncMock(return_value={"id": "cr_1"})
    mock.find_creator_by_training_job = AsyncMock(return_value={"id": "cr_1"})
    mock.update_creator_model_status = AsyncMock(return_value={})
    mock.find_processing_generation = AsyncMock(return_value={"id": "gen_1"})
    mock.complete_generation = AsyncMock(return_value={})
    mock.fail_generation = AsyncMock(return_value={})
    return mock


@pytest.fixture
def royalties():
    mock = MagicMock()
    mock.process_order_royalties = AsyncMock(return_value=["tr_1"])
    mock.handle_transfer_update = AsyncMock(return_value="COMPLETED")
    return mock


def _image_client(status_code=200, content=b"jpeg-bytes"):
    return httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(status_code, content=content)),
    )


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------


class TestCheckoutSessionCompleted:
    async def test_marks_paid_then_pays_royalties(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        result = await handlers.checkout_session_completed({"id": "cs_1", "payment_intent": "pi_1"})

        marketplace.mark_order_paid.assert_awaited_once_with("cs_1", "pi_1")
        royalties.process_order_royalties.assert_awaited_once_with("ord_1")
        assert result == {"order_id": "ord_1", "transfers": ["tr_1"]}

    async def test_expanded_payment_intent(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        await handlers.checkout_session_completed({"id": "cs_1", "payment_intent": {"id": "pi_2"}})
        marketplace.mark_order_paid.assert_awaited_once_with("cs_1", "pi_2")

    async def test_missing_payment_intent_is_noop(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        assert await handlers.checkout_session_completed({"id": "cs_1", "payment_intent": None}) is None
        marketplace.mark_order_paid.assert_not_called()

    async def test_no_order_skips_royalties(self, marketplace, royalties):
        marketplace.mark_order_paid.return_value = None
        handlers = WebhookHandlers(marketplace, royalties)
        assert await handlers.checkout_session_completed({"id": "cs_1", "payment_intent": "pi_1"}) is None
        royalties.process_order_royalties.assert_not_called()

    async def test_royalty_failure_propagates(self, marketplace, royalties):
        royalties.process_order_royalties.side_effect = RuntimeError("stripe down")
        handlers = WebhookHandlers(marketplace, royalties)
        with pytest.raises(RuntimeError):
            await handlers.checkout_session_completed({"id": "cs_1", "payment_intent": "pi_1"})


class TestTransfersAndAccounts:
    @pytest.mark.parametrize("method,status", [
        ("transfer_created", "created"),
        ("transfer_paid", "paid"),
        ("transfer_failed", "failed"),
        ("transfer_reversed", "reversed"),
    ])
    async def test_transfer_events(self, marketplace, royalties, method, status):
        handlers = WebhookHandlers(marketplace, royalties)
        await getattr(handlers, method)({"id": "tr_9"})
        royalties.handle_transfer_update.assert_awaited_once_with("tr_9", status)

    async def test_account_onboarding_complete(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        complete = await handlers.account_updated({
            "id": "acct_1", "charges_enabled": True, "payouts_enabled": True, "details_submitted": True,
        })
        assert complete is True
        marketplace.update_account_onboarding.assert_awaited_once_with("acct_1", True)

    async def test_account_onboarding_incomplete(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        complete = await handlers.account_updated({"id": "acct_1", "charges_enabled": True})
        assert complete is False
        marketplace.update_account_onboarding.assert_awaited_once_with("acct_1", False)


# ---------------------------------------------------------------------------
# fal.ai training
# ---------------------------------------------------------------------------


class TestTrainingUpdate:
    async def test_completed_sets_ready(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        status = await handlers.training_update({
            "request_id": "job_1",
            "status": "COMPLETED",
            "output": {"lora_url": "https://cdn.test/lora.safetensors", "trigger_word": "cameo_ava"},
        })
        assert status == "READY"
        marketplace.update_creator_model_status.assert_awaited_once_with(
            "cr_1", "READY", lora_url="https://cdn.test/lora.safetensors", trigger_word="cameo_ava",
        )

    async def test_completed_without_lora_url_fails_and_raises(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        with pytest.raises(ValueError, match="LoRA URL"):
            await handlers.training_update({"request_id": "job_1", "status": "COMPLETED", "output": {}})
        marketplace.update_creator_model_status.assert_awaited_once_with("cr_1", "FAILED")

    async def test_failed_sets_failed(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        status = await handlers.training_update({"request_id": "job_1", "status": "FAILED", "error": "OOM"})
        assert status == "FAILED"
        marketplace.update_creator_model_status.assert_awaited_once_with("cr_1", "FAILED")

    async def test_unknown_creator_raises(self, marketplace, royalties):
        marketplace.find_creator_by_training_job.return_value = None
        handlers = WebhookHandlers(marketplace, royalties)
        with pytest.raises(LookupError):
            await handlers.training_update({"request_id": "job_x", "status": "COMPLETED"})

    async def test_in_progress_status_is_noop(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        assert await handlers.training_update({"request_id": "job_1", "status": "IN_PROGRESS"}) == "IN_PROGRESS"
        marketplace.update_creator_model_status.assert_not_called()


# ---------------------------------------------------------------------------
# Replicate generations
# ---------------------------------------------------------------------------


class TestPredictionUpdate:
    async def test_succeeded_downloads_and_completes(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties, http_client=_image_client())
        status = await handlers.prediction_update({
            "id": "pred_1", "status": "succeeded", "output": ["https://replicate.test/out.jpg"],
        })
        assert status == "COMPLETED"
        marketplace.complete_generation.assert_awaited_once_with("gen_1", b"jpeg-bytes")

    async def test_download_failure_raises(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties, http_client=_image_client(status_code=500))
        with pytest.raises(RuntimeError, match="download"):
            await handlers.prediction_update({
                "id": "pred_1", "status": "succeeded", "output": ["https://replicate.test/out.jpg"],
            })
        marketplace.complete_generation.assert_not_called()

    async def test_succeeded_without_output_raises(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        with pytest.raises(ValueError):
            await handlers.prediction_update({"id": "pred_1", "status": "succeeded", "output": []})

    async def test_failed_marks_generation_failed(self, marketplace, royalties):
        handlers = WebhookHandlers(marketplace, royalties)
        status = await handlers.prediction_update({"id": "pred_1", "status": "failed", "error": "NSFW"})
        assert status == "FAILED"
        marketplace.fail_generation.assert_awaited_once_with("gen_1", "NSFW")

    async def test_no_matching_generation_is_soft(self, marketplace, royalties):
        marketplace.find_processing_generation.return_value = None
        handlers = WebhookHandlers(marketplace, royalties)
        assert await handlers.prediction_update({"id": "pred_1", "status": "succeeded", "output": ["u"]}) is None
        marketplace.complete_generation.assert_not_called()


class TestBuildHandlerRegistry:
    def test_routes(self, marketplace, royalties):
        registry = build_handler_registry(WebhookHandlers(marketplace, royalties))
        assert registry.event_types("stripe") == [
            "account.updated",
            "checkout.session.completed",
            "payment_intent.succeeded",
            "transfer.created",
            "transfer.failed",
            "transfer.paid",
            "transfer.reversed",
        ]
        assert registry.event_types("fal") == ["training_update"]
        assert registry.event_types("replicate") == ["prediction_update"]

    async def test_bound_handler_reaches_marketplace(self, marketplace, royalties):
        registry = build_handler_registry(WebhookHandlers(marketplace, royalties))
        handler = registry.bind("stripe", "account.updated", {"id": "acct_1"})
        assert await handler() is False
        marketplace.update_account_onboarding.assert_awaited_once_with("acct_1", False)
