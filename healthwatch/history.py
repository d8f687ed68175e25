from __future__ import annotations

from collections import deque
from typing import Iterable

from healthwatch.models import CheckResult


DEFAULT_CAPACITY = 100


class HistoryRing:
    """Bounded, oldest-evicted-first sequence of CheckResults for a single target."""

    def __init__(self, target_id: str, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.target_id = target_id
        self.capacity = int(capacity)
        self._items: deque[CheckResult] = deque(maxlen=self.capacity)

    def append(self, result: CheckResult) -> None:
        self._items.append(result)

    def extend(self, results: Iterable[CheckResult]) -> None:
        for r in results:
            self._items.append(r)

    def snapshot(self) -> list[CheckResult]:
        return list(self._items)

    def tail(self, n: int) -> list[CheckResult]:
        if n <= 0:
            return []
        items = list(self._items)
        return items[-n:]

    def last(self) -> CheckResult | None:
        return self._items[-1] if self._items else None

    def __len__(self) -> int:
        return len(self._items)


class HistoryStore:
    """
    Owns one HistoryRing per target.

    Injected into the scheduler so separate engines (and tests) never share rings.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = int(capacity)
        self._rings: dict[str, HistoryRing] = {}

    def ring(self, target_id: str) -> HistoryRing:
        ring = self._rings.get(target_id)
        if ring is None:
            ring = HistoryRing(target_id, capacity=self.capacity)
            self._rings[target_id] = ring
        return ring

    def append(self, target_id: str, result: CheckResult) -> HistoryRing:
        ring = self.ring(target_id)
        ring.append(result)
        return ring

    def get(self, target_id: str) -> list[CheckResult]:
        ring = self._rings.get(target_id)
        return ring.snapshot() if ring is not None else []

    def recent(self, target_id: str, limit: int) -> list[CheckResult]:
        ring = self._rings.get(target_id)
        return ring.tail(limit) if ring is not None else []

    def is_empty(self, target_id: str) -> bool:
        ring = self._rings.get(target_id)
        return ring is None or len(ring) == 0


def compute_availability(items: list[CheckResult]) -> tuple[int, int, float | None]:
    """
    Returns (total, healthy_count, healthy_percent_or_None_if_total_0)
    """
    total = len(items)
    if total <= 0:
        return 0, 0, None
    ok_count = sum(1 for r in items if r.healthy)
    ok_pct = (ok_count / float(total)) * 100.0
    return total, ok_count, ok_pct
