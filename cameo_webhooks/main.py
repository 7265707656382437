"""
Cameo webhook service - signed provider webhooks with retries and dead-lettering.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from cameo_webhooks.config import get_settings
from cameo_webhooks.api.router import api_router
from cameo_webhooks.container import build_container
from cameo_webhooks.models.webhook_event import WebhookSource
from cameo_webhooks.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from cameo_webhooks.utils.redis_client import close_redis

logger = logging.getLogger("cameo_webhooks")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Tests install their own container before startup
    container = getattr(app.state, "container", None)
    owns_container = container is None
    settings = get_settings() if owns_container else container.settings
    logger.info("Cameo webhooks starting up (env=%s)", settings.app_env)

    for source in WebhookSource.ALL:
        if not settings.webhook_secret_for(source):
            logger.warning(
                "%s webhook secret not set - %s",
                source.upper(),
                "webhooks will be rejected" if settings.app_env == "production"
                else "signatures will not be verified",
            )
    if not settings.admin_jwt_secret:
        logger.warning("ADMIN_JWT_SECRET not set - admin API disabled")

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    if owns_container:
        container = build_container(settings)
        app.state.container = container

    worker_tasks: list[asyncio.Task] = []
    if settings.retry_worker_enabled:
        from cameo_webhooks.workers.retry_worker import run_retry_worker
        worker_tasks.append(asyncio.create_task(
            run_retry_worker(container.retry_processor, settings.retry_poll_interval_seconds)
        ))
    else:
        logger.info("Retry worker disabled (RETRY_WORKER_ENABLED=false)")

    yield

    logger.info("Cameo webhooks shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    if owns_container:
        await container.aclose()
        app.state.container = None
    await close_redis()
    logger.info("Cameo webhooks shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Structured logging with correlation IDs (JSON unless LOG_JSON=false)
    configure_structured_logging(settings.log_level, json_output=settings.log_json)

    application = FastAPI(
        title="Cameo Webhooks",
        description="Provider webhook ingestion with retries and dead-lettering",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.state.container = None

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)

    return application


app = create_app()
