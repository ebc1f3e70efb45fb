"""Keep-alive sends and idle-connection supervision.

Both run only while the transport is open: the session starts them on open
and disarms them before every new connection attempt and on close, so
neither can act on a stale transport handle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from wsession.network.timers import TimerSet

LOGGER = logging.getLogger(__name__)

HEARTBEAT_TASK = "heartbeat"
INACTIVITY_TIMER = "inactivity"


class Heartbeat:
    """Periodically sends the configured keep-alive payload."""

    def __init__(
        self,
        timers: TimerSet,
        *,
        interval_ms: int,
        message: str,
        send: Callable[[str], None],
        is_open: Callable[[], bool],
    ) -> None:
        self._timers = timers
        self._interval = interval_ms / 1000
        self._message = message
        self._send = send
        self._is_open = is_open

    @property
    def enabled(self) -> bool:
        return bool(self._interval > 0 and self._message)

    @property
    def running(self) -> bool:
        return self._timers.is_active(HEARTBEAT_TASK)

    def start(self) -> None:
        if not self.enabled or self.running:
            return
        self._timers.spawn(HEARTBEAT_TASK, self._heartbeat_loop())

    def stop(self) -> None:
        self._timers.cancel(HEARTBEAT_TASK)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if not self._is_open():
                continue
            try:
                self._send(self._message)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Heartbeat send failed: %s", exc)
                continue
            LOGGER.debug("Heartbeat sent")


class InactivityMonitor:
    """Invokes ``on_idle`` when no inbound traffic arrives within the timeout."""

    def __init__(self, timers: TimerSet, *, timeout_ms: int, on_idle: Callable[[], None]) -> None:
        self._timers = timers
        self._timeout_ms = timeout_ms
        self._on_idle = on_idle

    @property
    def armed(self) -> bool:
        return self._timers.is_active(INACTIVITY_TIMER)

    def touch(self) -> None:
        """Restart the idle countdown after inbound traffic."""

        if self._timeout_ms <= 0:
            return
        self._timers.call_later(INACTIVITY_TIMER, self._timeout_ms, self._expire)

    def disarm(self) -> None:
        self._timers.cancel(INACTIVITY_TIMER)

    def _expire(self) -> None:
        LOGGER.info("Inactivity timeout reached after %sms, closing transport", self._timeout_ms)
        self._on_idle()
