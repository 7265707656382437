"""
Webhook event store - durable CRUD over webhook_events and dead_letter_queue.

Every operation opens its own session and commits before returning, so a
status write survives even when the caller's request session rolls back.
Status writes lock the row (SELECT ... FOR UPDATE) to serialize concurrent
transitions of the same event.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from sqlalchemy import select, func, and_, or_, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from cameo_webhooks.models.webhook_event import WebhookEvent, WebhookStatus
from cameo_webhooks.models.dead_letter import DeadLetterEntry
from cameo_webhooks.services.errors import InvalidTransitionError, WebhookEventNotFoundError
from cameo_webhooks.services.retry_policy import RetryDecision, RetryPolicy

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 4000

EventId = Union[str, uuid.UUID]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(event_id: EventId) -> uuid.UUID:
    if isinstance(event_id, uuid.UUID):
        return event_id
    try:
        return uuid.UUID(str(event_id))
    except ValueError:
        raise WebhookEventNotFoundError(event_id)


class WebhookEventStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # === WRITES ===

    async def create(
        self,
        source: str,
        event_type: str,
        payload: dict,
        signature: Optional[str] = None,
        provider_event_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> tuple[WebhookEvent, bool]:
        """
        Insert a PENDING event. Returns (event, created).
        A known (source, provider_event_id) returns the existing record instead.
        """
        if provider_event_id:
            existing = await self.find_by_provider_event(source, provider_event_id)
            if existing is not None:
                return existing, False

        now = _utcnow()
        event = WebhookEvent(
            id=uuid.uuid4(),
            source=source,
            event_type=event_type,
            provider_event_id=provider_event_id,
            payload=payload,
            signature=signature,
            retry_count=0,
            status=WebhookStatus.PENDING,
            correlation_id=correlation_id,
            created_at=now,
            updated_at=now,
        )

        async with self._session_factory() as db:
            db.add(event)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                if not provider_event_id:
                    raise
                # Lost the insert race against a concurrent delivery
                existing = await self.find_by_provider_event(source, provider_event_id)
                if existing is None:
                    raise
                return existing, False

        logger.info(
            "Webhook event recorded: id=%s source=%s type=%s",
            str(event.id)[:8], source, event_type,
        )
        return event, True

    async def mark_processing(self, event_id: EventId) -> WebhookEvent:
        return await self._transition(event_id, WebhookStatus.PROCESSING)

    async def mark_completed(self, event_id: EventId) -> WebhookEvent:
        now = _utcnow()
        return await self._transition(
            event_id,
            WebhookStatus.COMPLETED,
            processed_at=now,
            error_message=None,
            next_retry_at=None,
        )

    async def reset_to_pending(self, event_id: EventId) -> WebhookEvent:
        """FAILED -> PENDING. retry_count is kept."""
        return await self._transition(
            event_id,
            WebhookStatus.PENDING,
            error_message=None,
            next_retry_at=None,
        )

    async def record_failure(
        self,
        event_id: EventId,
        error: str,
        policy: RetryPolicy,
    ) -> RetryDecision:
        """
        Apply one failure to the event under the retry policy.
        Dead-lettering creates the DeadLetterEntry in the same transaction.
        """
        error = (error or "Unknown error")[:MAX_ERROR_LENGTH]
        async with self._session_factory() as db:
            event = await self._load_for_update(db, event_id)
            if event.status not in (WebhookStatus.PROCESSING, WebhookStatus.FAILED):
                raise InvalidTransitionError(event.id, event.status, WebhookStatus.FAILED)

            now = _utcnow()
            decision = policy.decide(event.retry_count)
            event.retry_count = decision.retry_count
            event.status = decision.status
            event.error_message = error
            event.next_retry_at = policy.next_retry_at(decision, now)
            event.updated_at = now

            if decision.status == WebhookStatus.DEAD_LETTER:
                db.add(DeadLetterEntry(
                    id=uuid.uuid4(),
                    webhook_event_id=event.id,
                    final_error=error,
                    created_at=now,
                ))

            await db.commit()
        return decision

    async def mark_dead_letter_reviewed(
        self,
        entry_id: EventId,
        reviewed_by: str,
        note: Optional[str] = None,
    ) -> DeadLetterEntry:
        async with self._session_factory() as db:
            result = await db.execute(
                select(DeadLetterEntry)
                .options(selectinload(DeadLetterEntry.webhook_event))
                .where(DeadLetterEntry.id == _as_uuid(entry_id))
                .with_for_update()
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                raise WebhookEventNotFoundError(entry_id)
            entry.reviewed = True
            entry.reviewed_by = reviewed_by
            entry.reviewed_at = _utcnow()
            entry.review_note = note
            await db.commit()
        return entry

    # === READS ===

    async def get(self, event_id: EventId) -> WebhookEvent:
        async with self._session_factory() as db:
            event = await db.get(WebhookEvent, _as_uuid(event_id))
        if event is None:
            raise WebhookEventNotFoundError(event_id)
        return event

    async def find_by_provider_event(
        self, source: str, provider_event_id: str,
    ) -> Optional[WebhookEvent]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(WebhookEvent).where(
                    and_(
                        WebhookEvent.source == source,
                        WebhookEvent.provider_event_id == provider_event_id,
                    )
                )
            )
            return result.scalar_one_or_none()

    async def list_retryable(
        self,
        max_batch: Optional[int],
        max_retries: int,
        cooldown_seconds: int = 0,
        now: Optional[datetime] = None,
        due_only: bool = True,
    ) -> list[WebhookEvent]:
        """
        FAILED events whose backoff has elapsed (any FAILED event when due_only=False),
        oldest first. max_batch=None returns every match.
        """
        now = now or _utcnow()
        conditions = [
            WebhookEvent.status == WebhookStatus.FAILED,
            WebhookEvent.retry_count < max_retries,
        ]
        if due_only:
            conditions.append(
                or_(WebhookEvent.next_retry_at.is_(None), WebhookEvent.next_retry_at <= now)
            )
        if due_only and cooldown_seconds > 0:
            conditions.append(WebhookEvent.updated_at <= now - timedelta(seconds=cooldown_seconds))

        async with self._session_factory() as db:
            result = await db.execute(
                select(WebhookEvent)
                .where(and_(*conditions))
                .order_by(WebhookEvent.created_at.asc())
                .limit(max_batch)
            )
            return list(result.scalars().all())

    async def list_stale_processing(
        self,
        older_than_seconds: int,
        limit: int = 50,
        now: Optional[datetime] = None,
        status: WebhookStatus = WebhookStatus.PROCESSING,
    ) -> list[WebhookEvent]:
        """Events left in status (PROCESSING by default) untouched for older_than_seconds."""
        cutoff = (now or _utcnow()) - timedelta(seconds=older_than_seconds)
        async with self._session_factory() as db:
            result = await db.execute(
                select(WebhookEvent)
                .where(
                    and_(
                        WebhookEvent.status == status,
                        WebhookEvent.updated_at < cutoff,
                    )
                )
                .order_by(WebhookEvent.updated_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_by_status(
        self,
        source: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict[str, int]:
        """Event counts per status (every status present, zero when absent)."""
        conditions = []
        if source:
            conditions.append(WebhookEvent.source == source)
        if start:
            conditions.append(WebhookEvent.created_at >= start)
        if end:
            conditions.append(WebhookEvent.created_at <= end)

        query = select(WebhookEvent.status, func.count(WebhookEvent.id)).group_by(WebhookEvent.status)
        if conditions:
            query = query.where(and_(*conditions))

        async with self._session_factory() as db:
            rows = (await db.execute(query)).all()

        counts = {status: 0 for status in WebhookStatus.ALL}
        for status, count in rows:
            counts[status] = count
        return counts

    async def list_recent_failures(self, limit: int = 50) -> list[WebhookEvent]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(WebhookEvent)
                .where(WebhookEvent.status.in_([WebhookStatus.FAILED, WebhookStatus.DEAD_LETTER]))
                .order_by(desc(WebhookEvent.updated_at))
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_dead_letters(self, include_reviewed: bool = True) -> list[DeadLetterEntry]:
        query = (
            select(DeadLetterEntry)
            .options(selectinload(DeadLetterEntry.webhook_event))
            .order_by(desc(DeadLetterEntry.created_at))
        )
        if not include_reviewed:
            query = query.where(DeadLetterEntry.reviewed == False)  # noqa: E712

        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    # === INTERNAL ===

    async def _load_for_update(self, db: AsyncSession, event_id: EventId) -> WebhookEvent:
        result = await db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.id == _as_uuid(event_id))
            .with_for_update()
        )
        event = result.scalar_one_or_none()
        if event is None:
            raise WebhookEventNotFoundError(event_id)
        return event

    async def _transition(self, event_id: EventId, target: str, **changes) -> WebhookEvent:
        async with self._session_factory() as db:
            event = await self._load_for_update(db, event_id)
            if not WebhookStatus.can_transition(event.status, target):
                raise InvalidTransitionError(event.id, event.status, target)
            event.status = target
            for key, value in changes.items():
                setattr(event, key, value)
            event.updated_at = _utcnow()
            await db.commit()
        return event
