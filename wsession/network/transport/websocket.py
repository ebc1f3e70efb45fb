"""WebSocket transport implementation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Sequence
from typing import Deque, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from wsession.network.errors import TransportNotReady
from wsession.network.transport.base import BaseTransport, CloseInfo, OpenInfo

LOGGER = logging.getLogger(__name__)


def _frame_size(data: str | bytes) -> int:
    if isinstance(data, str):
        return len(data.encode("utf-8"))
    return len(data)


class WebSocketTransport(BaseTransport):
    """WebSocket handle over the ``websockets`` asyncio client.

    ``send`` never blocks: frames go to an outgoing buffer drained by a
    writer task, and ``buffered_amount`` reports the bytes not yet handed to
    the socket.
    """

    def __init__(self, url: str, protocols: Optional[Sequence[str]] = None) -> None:
        super().__init__(url, protocols)
        self._ws: Optional[ClientConnection] = None
        self._run_task: Optional[asyncio.Task[None]] = None
        self._writer_task: Optional[asyncio.Task[None]] = None
        self._close_task: Optional[asyncio.Task[None]] = None
        self._outgoing: Deque[str | bytes] = deque()
        self._wakeup = asyncio.Event()
        self._buffered = 0
        self._closing = False
        self._finished = False

    @property
    def buffered_amount(self) -> int:
        return self._buffered

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing and not self._finished

    def open(self) -> None:
        if self._run_task is not None:
            return
        self._run_task = asyncio.create_task(self._run(), name="transport-run")

    def send(self, data: str | bytes) -> None:
        if not self.is_open:
            raise TransportNotReady("WebSocket transport not connected")
        self._outgoing.append(data)
        self._buffered += _frame_size(data)
        self._wakeup.set()

    def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closing or self._finished:
            return
        self._closing = True
        if self._ws is None:
            if self._run_task is not None and not self._run_task.done():
                self._run_task.cancel()
            return
        LOGGER.info("Closing WebSocket transport")
        self._close_task = asyncio.create_task(self._ws.close(code, reason), name="transport-close")

    async def _run(self) -> None:
        LOGGER.info("Connecting to WebSocket at %s", self.url)
        try:
            self._ws = await connect(self.url, subprotocols=self.protocols, open_timeout=None)
        except asyncio.CancelledError:
            self._finish(CloseInfo(code=1006, reason="connection aborted"))
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("WebSocket connect failed: %s", exc)
            self._fire_failed(exc)
            self._finish(CloseInfo(code=1006, reason=str(exc)))
            return

        if self._closing:
            await self._ws.close()
            self._finish(CloseInfo(code=1000, reason="closed before open", was_clean=True))
            return

        self._fire_ready(OpenInfo(url=self.url, subprotocol=self._ws.subprotocol))
        self._writer_task = asyncio.create_task(self._write_loop(), name="transport-writer")
        try:
            async for message in self._ws:
                self._fire_data(message)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            self._fire_failed(exc)
        except asyncio.CancelledError:
            self._stop_writer()
            raise
        self._stop_writer()
        code = self._ws.close_code if self._ws.close_code is not None else 1006
        self._finish(
            CloseInfo(
                code=code,
                reason=self._ws.close_reason or "",
                was_clean=code in {1000, 1001},
            )
        )

    async def _write_loop(self) -> None:
        assert self._ws is not None
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            while self._outgoing:
                data = self._outgoing.popleft()
                try:
                    await self._ws.send(data)
                except ConnectionClosed:
                    self._outgoing.clear()
                    self._buffered = 0
                    return
                finally:
                    self._buffered = max(0, self._buffered - _frame_size(data))
                LOGGER.debug("WebSocket send: %s", data)

    def _stop_writer(self) -> None:
        if self._writer_task is not None and not self._writer_task.done():
            self._writer_task.cancel()
        self._outgoing.clear()
        self._buffered = 0

    def _finish(self, info: CloseInfo) -> None:
        if self._finished:
            return
        self._finished = True
        self._fire_closed(info)

    async def wait_closed(self) -> None:
        """Await the handle's background tasks (used on shutdown)."""

        for task in (self._run_task, self._close_task, self._writer_task):
            if task is None:
                continue
            with contextlib.suppress(asyncio.CancelledError):
                await task
