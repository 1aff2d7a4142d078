from __future__ import annotations

import itertools
import threading
from typing import Sequence

# Counter values wrap around at 2**64.
COUNTER_MASK = (1 << 64) - 1


class RoundRobinDispatcher:
    """Hands out targets in round-robin order from a shared, ever-increasing counter."""

    def __init__(self, targets: Sequence[str], start: int = 0) -> None:
        if not targets:
            raise ValueError("RoundRobinDispatcher requires at least one target")
        self._targets = tuple(targets)
        self._counter = itertools.count(start=start)
        self._lock = threading.Lock()

    def claim(self) -> int:
        with self._lock:
            value = next(self._counter)
        return value & COUNTER_MASK

    def next_with_index(self) -> tuple[int, str]:
        value = self.claim()
        return value, self._targets[value % len(self._targets)]

    def next(self) -> str:
        return self.next_with_index()[1]


__all__ = ["COUNTER_MASK", "RoundRobinDispatcher"]
