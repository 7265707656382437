"""
Retry policy for webhook events - pure decision logic, no I/O.

Backoff schedule is indexed by attempt number (1st failure -> delays[0]);
attempts past the end of the schedule reuse the last delay. The failure that
brings retry_count up to max_retries dead-letters the event, so retry_count
never exceeds max_retries. Only the first max_retries - 1 delays are ever
waited: with the defaults (3 retries, 1s/5s/15s) an event is retried after
1s and 5s and dead-letters on its third failure. The 15s step is used when
max_retries is raised to 4 or more.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from cameo_webhooks.models.webhook_event import WebhookStatus

MAX_RETRIES = 3
RETRY_DELAYS_MS = (1000, 5000, 15000)


@dataclass(frozen=True)
class RetryDecision:
    should_retry: bool
    retry_count: int
    status: str
    retry_after_ms: Optional[int] = None


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = MAX_RETRIES
    delays_ms: tuple[int, ...] = RETRY_DELAYS_MS

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if not self.delays_ms:
            raise ValueError("delays_ms must contain at least one delay")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.webhook_max_retries,
            delays_ms=tuple(settings.webhook_retry_delays_ms),
        )

    def delay_for(self, attempt: int) -> int:
        """Backoff in milliseconds after the given (1-based) failed attempt."""
        idx = min(max(attempt, 1), len(self.delays_ms)) - 1
        return self.delays_ms[idx]

    def decide(self, retry_count: int) -> RetryDecision:
        """Outcome of one more failure for an event that has failed retry_count times."""
        new_count = retry_count + 1
        if new_count < self.max_retries:
            return RetryDecision(
                should_retry=True,
                retry_count=new_count,
                status=WebhookStatus.FAILED,
                retry_after_ms=self.delay_for(new_count),
            )
        return RetryDecision(
            should_retry=False,
            retry_count=min(new_count, self.max_retries),
            status=WebhookStatus.DEAD_LETTER,
        )

    def next_retry_at(self, decision: RetryDecision, now: datetime) -> Optional[datetime]:
        if not decision.should_retry or decision.retry_after_ms is None:
            return None
        return now + timedelta(milliseconds=decision.retry_after_ms)
