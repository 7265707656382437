"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis and all external services.
"""
import httpx
import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool

from cameo_webhooks.config import Settings
from cameo_webhooks.container import build_container
from cameo_webhooks.database import Base
from cameo_webhooks.models import DeadLetterEntry, WebhookEvent  # noqa: F401 - registers tables
from cameo_webhooks.services.event_store import WebhookEventStore
from cameo_webhooks.services.handler_registry import HandlerRegistry
from cameo_webhooks.services.processing import WebhookProcessor
from cameo_webhooks.services.retry_manager import RetryManager
from cameo_webhooks.services.retry_policy import RetryPolicy
from cameo_webhooks.utils import alerting

STRIPE_SECRET = "whsec_test_secret"
FAL_SECRET = "fal_test_secret"
REPLICATE_SECRET = "replicate_test_secret"
ADMIN_SECRET = "admin_jwt_test_secret"
ADMIN_EMAIL = "ops@cameo.test"


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def session_factory():
    """In-memory SQLite database shared across sessions (StaticPool)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return WebhookEventStore(session_factory)


@pytest.fixture
def policy():
    return RetryPolicy()


@pytest.fixture
def retry_manager(store, policy):
    return RetryManager(store, policy)


@pytest.fixture
def processor(store, retry_manager):
    return WebhookProcessor(store, retry_manager)


@pytest.fixture
def settings():
    """Settings for tests - secrets set, no background worker, no Sentry."""
    return Settings(
        _env_file=None,
        app_env="test",
        log_level="WARNING",
        database_url="sqlite+aiosqlite:///:memory:",
        stripe_webhook_secret=STRIPE_SECRET,
        fal_webhook_secret=FAL_SECRET,
        replicate_webhook_secret=REPLICATE_SECRET,
        admin_jwt_secret=ADMIN_SECRET,
        admin_emails=ADMIN_EMAIL,
        retry_worker_enabled=False,
        retry_cooldown_seconds=0,
        sentry_dsn="",
        alert_webhook_url="",
    )


@pytest.fixture
def registry():
    """Empty registry - every event falls through to the default no-op handler."""
    return HandlerRegistry()


@pytest.fixture
def container(settings, session_factory, registry):
    return build_container(settings, session_factory=session_factory, registry=registry)


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis - locks, alert cooldowns and heartbeats never touch a server."""
    redis_mock = AsyncMock()
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.eval = AsyncMock(return_value=1)
    redis_mock.ping = AsyncMock(return_value=True)
    get_redis = AsyncMock(return_value=redis_mock)
    with (
        patch("cameo_webhooks.utils.alerting.get_redis", get_redis),
        patch("cameo_webhooks.utils.locks.get_redis", get_redis),
        patch("cameo_webhooks.workers.retry_worker.get_redis", get_redis),
        patch("cameo_webhooks.api.health.get_redis", get_redis),
    ):
        yield redis_mock
    alerting._local_cooldowns.clear()


@pytest.fixture
def app(container):
    """Application with the test container installed (lifespan is not run)."""
    from cameo_webhooks.main import create_app
    application = create_app()
    application.state.container = container
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
