"""Resilient WebSocket sessions: reconnection, prioritised sends, batching and liveness."""

from wsession.config import SessionSettings, get_settings
from wsession.network import (
    Codec,
    DummyTransport,
    Priority,
    Session,
    SessionEvent,
    SessionPool,
    SessionState,
    WebSocketTransport,
)

__all__ = [
    "Codec",
    "DummyTransport",
    "Priority",
    "Session",
    "SessionEvent",
    "SessionPool",
    "SessionSettings",
    "SessionState",
    "WebSocketTransport",
    "get_settings",
]

__version__ = "0.1.0"
