"""
Service wiring - builds the webhook pipeline once at startup.
Routes reach it through request.app.state.container; tests build their own
against an in-memory database.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cameo_webhooks.config import Settings
from cameo_webhooks.database import create_engine_from_settings, create_session_factory
from cameo_webhooks.services.event_store import WebhookEventStore
from cameo_webhooks.services.handler_registry import HandlerRegistry
from cameo_webhooks.services.marketplace import MarketplaceClient
from cameo_webhooks.services.processing import WebhookProcessor
from cameo_webhooks.services.retry_manager import RetryManager
from cameo_webhooks.services.retry_policy import RetryPolicy
from cameo_webhooks.services.royalties import RoyaltyService
from cameo_webhooks.services.webhook_handlers import WebhookHandlers, build_handler_registry
from cameo_webhooks.workers.retry_worker import RetryProcessor


@dataclass
class Container:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    store: WebhookEventStore
    retry_manager: RetryManager
    processor: WebhookProcessor
    registry: HandlerRegistry
    retry_processor: RetryProcessor
    engine: Optional[AsyncEngine] = None
    marketplace: Optional[MarketplaceClient] = None

    async def aclose(self) -> None:
        if self.marketplace is not None:
            await self.marketplace.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_container(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    registry: Optional[HandlerRegistry] = None,
) -> Container:
    """
    Wire the pipeline. Pass session_factory / registry to substitute the
    database or the business handlers.
    """
    engine = None
    if session_factory is None:
        engine = create_engine_from_settings(settings)
        session_factory = create_session_factory(engine)

    marketplace = None
    if registry is None:
        marketplace = MarketplaceClient.from_settings(settings)
        registry = build_handler_registry(
            WebhookHandlers(marketplace, RoyaltyService(marketplace))
        )

    store = WebhookEventStore(session_factory)
    retry_manager = RetryManager(
        store,
        RetryPolicy.from_settings(settings),
        cooldown_seconds=settings.retry_cooldown_seconds,
    )
    processor = WebhookProcessor(store, retry_manager)
    retry_processor = RetryProcessor(
        processor,
        retry_manager,
        registry,
        batch_size=settings.retry_batch_size,
        stuck_timeout_seconds=settings.stuck_processing_timeout_seconds,
    )

    return Container(
        settings=settings,
        session_factory=session_factory,
        store=store,
        retry_manager=retry_manager,
        processor=processor,
        registry=registry,
        retry_processor=retry_processor,
        engine=engine,
        marketplace=marketplace,
    )
