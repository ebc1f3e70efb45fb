"""In-memory transport for offline testing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Optional

from wsession.network.errors import TransportNotReady
from wsession.network.transport.base import BaseTransport, CloseInfo, OpenInfo

LOGGER = logging.getLogger(__name__)


class DummyTransport(BaseTransport):
    """Transport whose lifecycle is driven by the caller.

    With ``auto_open`` the handle reports ready on the next loop iteration
    after ``open``; otherwise use ``simulate_open``. ``close`` reports a clean
    close on the next loop iteration, like a real socket would.
    """

    def __init__(
        self,
        url: str = "ws://dummy",
        protocols: Optional[Sequence[str]] = None,
        *,
        auto_open: bool = False,
    ) -> None:
        super().__init__(url, protocols)
        self.auto_open = auto_open
        self.sent: list[str | bytes] = []
        self.opened = False
        self.close_calls = 0
        self.buffered = 0
        self._state = "new"

    @property
    def buffered_amount(self) -> int:
        return self.buffered

    @property
    def is_open(self) -> bool:
        return self._state == "open"

    @property
    def state(self) -> str:
        return self._state

    def open(self) -> None:
        LOGGER.debug("Dummy transport open(%s)", self.url)
        self.opened = True
        self._state = "connecting"
        if self.auto_open:
            asyncio.get_running_loop().call_soon(self.simulate_open)

    def send(self, data: str | bytes) -> None:
        if self._state != "open":
            raise TransportNotReady("Dummy transport not open")
        LOGGER.debug("Dummy transport send(): %s", data)
        self.sent.append(data)

    def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        if self._state in {"closing", "closed"}:
            return
        self._state = "closing"
        asyncio.get_running_loop().call_soon(
            self.simulate_close, CloseInfo(code=code, reason=reason, was_clean=True)
        )

    def simulate_open(self, subprotocol: Optional[str] = None) -> None:
        if self._state != "connecting":
            return
        self._state = "open"
        self._fire_ready(OpenInfo(url=self.url, subprotocol=subprotocol))

    def simulate_message(self, data: str | bytes) -> None:
        if self._state != "open":
            return
        self._fire_data(data)

    def simulate_error(self, exc: Optional[BaseException] = None) -> None:
        self._fire_failed(exc or ConnectionResetError("dummy transport error"))

    def simulate_close(self, info: Optional[CloseInfo] = None) -> None:
        if self._state == "closed":
            return
        self._state = "closed"
        self._fire_closed(info or CloseInfo(code=1006, reason="abnormal closure"))
