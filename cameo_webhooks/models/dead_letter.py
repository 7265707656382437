"""
Dead letter queue - one entry per webhook event that exhausted its retries.
The entry references the event; only the review fields change after creation.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Boolean, Text, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from cameo_webhooks.database import Base
from cameo_webhooks.models.webhook_event import WebhookEvent


class DeadLetterEntry(Base):
    __tablename__ = "dead_letter_queue"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    webhook_event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("webhook_events.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    final_error: Mapped[str] = mapped_column(Text, nullable=False)

    # Manual review annotations
    reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_note: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    webhook_event: Mapped[WebhookEvent] = relationship(lazy="raise")

    def __repr__(self) -> str:
        return f"<DeadLetterEntry event={self.webhook_event_id} reviewed={self.reviewed}>"
