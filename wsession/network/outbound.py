"""Two-lane bounded outbound queue and send rate limiter."""

from __future__ import annotations

import enum
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Deque, Optional

LOGGER = logging.getLogger(__name__)


class Priority(str, enum.Enum):
    HIGH = "high"
    NORMAL = "normal"

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        """Anything other than ``high`` lands in the normal lane."""

        if isinstance(value, Priority):
            return value
        if isinstance(value, str) and value.strip().lower() == cls.HIGH.value:
            return cls.HIGH
        return cls.NORMAL


@dataclass(frozen=True)
class QueueEntry:
    payload: Any
    priority: Priority


class OutboundQueue:
    """Strict FIFO per lane; the high lane always drains before the normal lane."""

    def __init__(self, max_size: int) -> None:
        self.max_size = max(0, int(max_size))
        self._lanes: dict[Priority, Deque[QueueEntry]] = {
            Priority.HIGH: deque(),
            Priority.NORMAL: deque(),
        }

    def offer(self, payload: Any, priority: Priority) -> bool:
        lane = self._lanes[priority]
        if len(lane) >= self.max_size:
            return False
        lane.append(QueueEntry(payload=payload, priority=priority))
        return True

    def push_front(self, entry: QueueEntry) -> None:
        """Return an entry whose dispatch failed to the head of its lane."""

        self._lanes[entry.priority].appendleft(entry)

    def trim_overflow(self) -> int:
        """Drop head entries from any lane holding more than ``max_size`` items."""

        dropped = 0
        for priority, lane in self._lanes.items():
            while len(lane) > self.max_size:
                lane.popleft()
                dropped += 1
                LOGGER.warning("Outbound %s lane above capacity, dropping message", priority.value)
        return dropped

    def peek_priority(self) -> Optional[Priority]:
        for priority in (Priority.HIGH, Priority.NORMAL):
            if self._lanes[priority]:
                return priority
        return None

    def pop(self) -> Optional[QueueEntry]:
        priority = self.peek_priority()
        if priority is None:
            return None
        return self._lanes[priority].popleft()

    def size(self, priority: Priority) -> int:
        return len(self._lanes[priority])

    def sizes(self) -> tuple[int, int]:
        return self.size(Priority.HIGH), self.size(Priority.NORMAL)

    def __len__(self) -> int:
        return sum(len(lane) for lane in self._lanes.values())


class RateLimiter:
    """Enforces a minimum spacing between consecutive sends."""

    def __init__(self, interval_ms: float, clock: Callable[[], float]) -> None:
        self.interval = max(0.0, float(interval_ms)) / 1000
        self._clock = clock
        self._last: Optional[float] = None

    def remaining_ms(self) -> float:
        if self._last is None or self.interval <= 0:
            return 0.0
        elapsed = self._clock() - self._last
        return max(0.0, (self.interval - elapsed) * 1000)

    def ready(self) -> bool:
        return self.remaining_ms() <= 0

    def mark(self) -> None:
        self._last = self._clock()
