"""Coalesces inbound messages into batched deliveries."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from typing import Any, Deque, Optional

from wsession.network.timers import TimerSet

LOGGER = logging.getLogger(__name__)

BATCH_TIMER = "batch"

_PENDING = object()


class BatchSlot:
    """Position in the batch reserved at arrival time."""

    __slots__ = ("value",)

    def __init__(self) -> None:
        self.value: Any = _PENDING

    @property
    def ready(self) -> bool:
        return self.value is not _PENDING


class InboundBatcher:
    """Buffers decoded inbound values and delivers them in arrival order.

    A single-shot timer of ``interval_ms`` is armed by the first value of a
    batch. Binary payloads reserve their slot on arrival and fill it once the
    asynchronous decode completes; a flush delivers only the leading filled
    slots so a later text message is never delivered ahead of an earlier
    binary one.
    """

    def __init__(
        self,
        timers: TimerSet,
        *,
        interval_ms: int,
        emit: Callable[[list[Any]], None],
        throttle_ms: int = 0,
    ) -> None:
        self._timers = timers
        self._interval_ms = interval_ms
        self._emit = emit
        self._throttle_ms = throttle_ms
        self._slots: Deque[BatchSlot] = deque()
        self._last_emit: Optional[float] = None
        self.batches = 0

    @property
    def pending(self) -> int:
        return len(self._slots)

    def reserve(self) -> BatchSlot:
        slot = BatchSlot()
        self._slots.append(slot)
        return slot

    def fill(self, slot: BatchSlot, value: Any) -> None:
        slot.value = value
        self._arm()

    def push(self, value: Any) -> None:
        self.fill(self.reserve(), value)

    def discard(self, slot: BatchSlot) -> None:
        try:
            self._slots.remove(slot)
        except ValueError:
            return
        if self._slots and self._slots[0].ready:
            self._arm()

    def flush(self) -> list[Any]:
        self._timers.cancel(BATCH_TIMER)
        batch: list[Any] = []
        while self._slots and self._slots[0].ready:
            batch.append(self._slots.popleft().value)
        if batch:
            self._last_emit = self._timers.now()
            self.batches += 1
            LOGGER.debug("Delivering batch of %s message(s)", len(batch))
            self._emit(batch)
        return batch

    def clear(self) -> None:
        self._timers.cancel(BATCH_TIMER)
        self._slots.clear()

    def _arm(self) -> None:
        if self._timers.is_active(BATCH_TIMER):
            return
        if not self._slots or not self._slots[0].ready:
            return
        self._timers.call_later(BATCH_TIMER, self._delay_ms(), self.flush)

    def _delay_ms(self) -> float:
        delay = float(self._interval_ms)
        if self._throttle_ms > 0 and self._last_emit is not None:
            since_ms = (self._timers.now() - self._last_emit) * 1000
            delay = max(delay, self._throttle_ms - since_ms)
        return delay
