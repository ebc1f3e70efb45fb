"""Minimal publish/subscribe surface for session lifecycle and data events."""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Dict, List

LOGGER = logging.getLogger(__name__)

Listener = Callable[..., Any]


class SessionEvent(str, enum.Enum):
    """Events emitted by a session, with their positional payloads."""

    CONNECTING = "connecting"  # ()
    OPEN = "open"  # (OpenInfo,)
    CLOSE = "close"  # (CloseInfo,)
    ERROR = "error"  # (SessionError,)
    RECONNECTING = "reconnecting"  # (attempt,)
    QUEUE_OVERFLOW = "queue_overflow"  # (Priority,)
    MESSAGE_BATCH = "message_batch"  # (list of decoded values,)
    BINARY_MESSAGE = "binary_message"  # (decoded value,)
    EXHAUSTED = "exhausted"  # (RetriesExhausted,)


class _Once:
    __slots__ = ("listener",)

    def __init__(self, listener: Listener) -> None:
        self.listener = listener

    def __call__(self, *args: Any) -> Any:
        return self.listener(*args)


class EventEmitter:
    """Synchronous emitter; coroutine listeners are scheduled as tasks."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()

    @staticmethod
    def _key(event: str | SessionEvent) -> str:
        return event.value if isinstance(event, SessionEvent) else str(event)

    def on(self, event: str | SessionEvent, listener: Listener) -> None:
        self._listeners[self._key(event)].append(listener)

    def once(self, event: str | SessionEvent, listener: Listener) -> None:
        self._listeners[self._key(event)].append(_Once(listener))

    def off(self, event: str | SessionEvent, listener: Listener | None = None) -> None:
        """Remove ``listener`` (including one-shot registrations), or every listener of ``event``."""

        key = self._key(event)
        if listener is None:
            self._listeners.pop(key, None)
            return
        self._listeners[key] = [
            registered
            for registered in self._listeners.get(key, [])
            if registered != listener and getattr(registered, "listener", None) != listener
        ]

    def listener_count(self, event: str | SessionEvent) -> int:
        return len(self._listeners.get(self._key(event), []))

    def emit(self, event: str | SessionEvent, *args: Any) -> int:
        key = self._key(event)
        listeners = list(self._listeners.get(key, []))
        fired = {id(item) for item in listeners if isinstance(item, _Once)}
        if fired:
            self._listeners[key] = [item for item in self._listeners[key] if id(item) not in fired]
        for listener in listeners:
            self._invoke(key, listener, args)
        return len(listeners)

    def _invoke(self, key: str, listener: Listener, args: tuple[Any, ...]) -> None:
        try:
            result = listener(*args)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Listener for %s raised", key, exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._reap(key, t))

    def _reap(self, key: str, task: asyncio.Future[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("Async listener for %s failed", key, exc_info=exc)

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
