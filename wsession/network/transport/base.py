"""Transport abstractions for the resilient session."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenInfo:
    url: str
    subprotocol: Optional[str] = None


@dataclass(frozen=True)
class CloseInfo:
    code: Optional[int] = None
    reason: str = ""
    was_clean: bool = False


@dataclass
class TransportHandlers:
    """Lifecycle callbacks a transport handle reports to its owner."""

    on_ready: Optional[Callable[[OpenInfo], None]] = None
    on_data: Optional[Callable[[str | bytes], None]] = None
    on_closed: Optional[Callable[[CloseInfo], None]] = None
    on_failed: Optional[Callable[[BaseException], None]] = None


class BaseTransport(ABC):
    """One message-oriented duplex connection attempt.

    A handle is single-use: it is opened once, reports ``ready``/``data``/
    ``failed``/``closed`` through the attached handlers, and is replaced by a
    fresh handle on reconnection. After ``detach`` no further callbacks reach
    the former owner.
    """

    def __init__(self, url: str, protocols: Optional[Sequence[str]] = None) -> None:
        self.url = url
        self.protocols = list(protocols) if protocols else None
        self._handlers = TransportHandlers()

    def attach(self, handlers: TransportHandlers) -> None:
        self._handlers = handlers

    def detach(self) -> None:
        self._handlers = TransportHandlers()

    @abstractmethod
    def open(self) -> None:
        ...

    @abstractmethod
    def send(self, data: str | bytes) -> None:
        ...

    @abstractmethod
    def close(self, code: int = 1000, reason: str = "") -> None:
        ...

    @property
    @abstractmethod
    def buffered_amount(self) -> int:
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    def _fire(self, name: str, *args: Any) -> None:
        callback = getattr(self._handlers, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Transport %s handler failed", name)

    def _fire_ready(self, info: OpenInfo) -> None:
        self._fire("on_ready", info)

    def _fire_data(self, data: str | bytes) -> None:
        self._fire("on_data", data)

    def _fire_closed(self, info: CloseInfo) -> None:
        self._fire("on_closed", info)

    def _fire_failed(self, exc: BaseException) -> None:
        self._fire("on_failed", exc)


TransportFactory = Callable[[str, Optional[Sequence[str]]], BaseTransport]
