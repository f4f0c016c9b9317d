from __future__ import annotations

from collections import Counter, defaultdict
from threading import Lock


class EventMetrics:
    """Per-subject event counters (circuit transitions, reminder deliveries)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, Counter[str]] = defaultdict(Counter)

    def increment(self, *, subject: str, event: str) -> None:
        with self._lock:
            self._counters[subject][event] += 1

    def snapshot(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {
                subject: dict(counter)
                for subject, counter in self._counters.items()
            }
