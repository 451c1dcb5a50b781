"""In-memory alert store for the current scan cycle."""

import threading
from typing import Iterable, Optional

from .models import Alert


class AlertStore:
    """Ordered, append-only list of the alerts produced by the latest scan.

    Cleared at the start of every scan. Insertion order is the only ordering
    guarantee: no sorting, no deduplication. Every method takes the store lock,
    so a reader gets either the state before or after a mutation, never half.
    """

    def __init__(self, alerts: Optional[Iterable[Alert]] = None):
        self._alerts: list[Alert] = list(alerts or [])
        self._lock = threading.Lock()

    def clear(self) -> None:
        with self._lock:
            self._alerts = []

    def add(self, alerts: Iterable[Alert]) -> None:
        alerts = list(alerts)
        if not alerts:
            return
        with self._lock:
            self._alerts.extend(alerts)

    def list(self, offset: int = 0, limit: Optional[int] = None) -> tuple[Alert, ...]:
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        with self._lock:
            end = None if limit is None else offset + limit
            return tuple(self._alerts[offset:end])

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
