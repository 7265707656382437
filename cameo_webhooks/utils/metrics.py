"""
Metrics utilities - latency timing and stats helpers for webhook monitoring.
"""
import time
from typing import Optional


class Timer:
    """Simple timer for measuring operation latency."""

    def __init__(self):
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self) -> "Timer":
        self._start = time.monotonic()
        return self

    def stop(self) -> int:
        """Stop timer and return elapsed milliseconds."""
        self._end = time.monotonic()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> int:
        """Return elapsed time in milliseconds."""
        if self._start is None:
            return 0
        end = self._end or time.monotonic()
        return int((end - self._start) * 1000)


def success_rate(completed: int, total: int) -> float:
    """Completed share of all events as a percentage (0.0 for an empty set)."""
    if total <= 0:
        return 0.0
    return round(completed / total * 100, 2)
