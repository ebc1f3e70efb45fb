"""Transport implementations for the resilient session."""

from .base import BaseTransport, CloseInfo, OpenInfo, TransportFactory, TransportHandlers
from .dummy import DummyTransport
from .websocket import WebSocketTransport

__all__ = [
    "BaseTransport",
    "CloseInfo",
    "DummyTransport",
    "OpenInfo",
    "TransportFactory",
    "TransportHandlers",
    "WebSocketTransport",
]
