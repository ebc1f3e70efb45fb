"""Named, cancellable timers and tasks owned by a single session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)


class TimerSet:
    """Tracks every pending timer and background task so they can be cancelled together.

    One-shot timers run on ``loop.call_later``; starting a timer under a name
    that is already armed replaces the previous one. Tasks are keyed the same
    way and are forgotten once they finish.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, name: str, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        self.cancel(name)

        def _fire() -> None:
            self._handles.pop(name, None)
            try:
                callback()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Timer %s callback failed", name)

        handle = self.loop.call_later(max(0.0, delay_ms) / 1000, _fire)
        self._handles[name] = handle
        return handle

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        self.cancel(name)
        task = self.loop.create_task(coro, name=name)
        self._tasks[name] = task

        def _done(finished: asyncio.Task[Any]) -> None:
            if self._tasks.get(name) is finished:
                self._tasks.pop(name, None)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                LOGGER.error("Task %s failed", name, exc_info=exc)

        task.add_done_callback(_done)
        return task

    def cancel(self, name: str) -> bool:
        cancelled = False
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()
            cancelled = True
        task = self._tasks.pop(name, None)
        if task is not None and not task.done():
            task.cancel()
            cancelled = True
        return cancelled

    def cancel_all(self) -> None:
        for name in list(self._handles) + list(self._tasks):
            self.cancel(name)

    def is_active(self, name: str) -> bool:
        if name in self._handles:
            return True
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def active(self) -> set[str]:
        names = set(self._handles)
        names.update(name for name, task in self._tasks.items() if not task.done())
        return names
