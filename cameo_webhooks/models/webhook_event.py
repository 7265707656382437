"""
Webhook event ledger - every inbound provider event is recorded before processing.
Carries the retry bookkeeping (status, retry_count, next_retry_at) that drives
the retry worker and the dead letter queue.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Text, DateTime, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from cameo_webhooks.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookSource:
    """Provider constants."""
    STRIPE = "stripe"  # payments
    FAL = "fal"  # LoRA training
    REPLICATE = "replicate"  # image generation

    ALL = (STRIPE, FAL, REPLICATE)


class WebhookStatus:
    """Lifecycle states. COMPLETED and DEAD_LETTER are terminal."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"

    ALL = (PENDING, PROCESSING, COMPLETED, FAILED, DEAD_LETTER)
    TERMINAL = (COMPLETED, DEAD_LETTER)

    # Allowed transitions: current -> reachable
    TRANSITIONS = {
        PENDING: (PROCESSING,),
        PROCESSING: (COMPLETED, FAILED, DEAD_LETTER),
        FAILED: (PENDING,),
        COMPLETED: (),
        DEAD_LETTER: (),
    }

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.TRANSITIONS.get(current, ())


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    source: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    provider_event_id: Mapped[Optional[str]] = mapped_column(String(255))
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    signature: Mapped[Optional[str]] = mapped_column(Text)  # audit only

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WebhookStatus.PENDING, index=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("source", "provider_event_id", name="uq_webhook_events_source_provider_event"),
        Index("ix_webhook_events_retryable", "status", "next_retry_at"),
        Index("ix_webhook_events_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.source}:{self.event_type} ({self.status})>"
