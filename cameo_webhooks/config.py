"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"
    log_json: bool = True

    # Database
    database_url: str = "postgresql+asyncpg://localhost/cameo"
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Provider webhook secrets
    stripe_webhook_secret: str = ""
    fal_webhook_secret: str = ""
    replicate_webhook_secret: str = ""
    signature_tolerance_seconds: int = 300

    # Stripe (royalty transfers)
    stripe_secret_key: str = ""

    # Marketplace core API (orders, creators, generations)
    marketplace_api_url: str = "http://localhost:3000/api/internal"
    marketplace_api_key: str = ""
    marketplace_timeout_seconds: float = 15.0

    # Retry policy. Failure number webhook_max_retries dead-letters, so only the first
    # webhook_max_retries - 1 delays are used (1s and 5s by default).
    webhook_max_retries: int = 3
    webhook_retry_delays_ms: list[int] = [1000, 5000, 15000]
    retry_batch_size: int = 10
    retry_cooldown_seconds: int = 60
    retry_poll_interval_seconds: int = 300
    retry_worker_enabled: bool = True
    stuck_processing_timeout_seconds: int = 600

    # Admin surface
    admin_jwt_secret: str = ""
    admin_emails: str = ""  # Comma-separated

    # Sentry
    sentry_dsn: str = ""

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("webhook_retry_delays_ms")
    @classmethod
    def _delays_not_empty(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("webhook_retry_delays_ms must contain at least one delay")
        if any(delay < 0 for delay in value):
            raise ValueError("webhook_retry_delays_ms must not contain negative delays")
        return value

    @property
    def admin_email_list(self) -> list[str]:
        return [e.strip().lower() for e in self.admin_emails.split(",") if e.strip()]

    def webhook_secret_for(self, source: str) -> str:
        """Shared secret for a provider source ("" when not configured)."""
        return {
            "stripe": self.stripe_webhook_secret,
            "fal": self.fal_webhook_secret,
            "replicate": self.replicate_webhook_secret,
        }.get(source, "")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
