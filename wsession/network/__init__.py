"""Network stack (transport/session/pool) for resilient message sessions."""

from wsession.network.codec import Codec
from wsession.network.errors import (
    ConnectionTimeout,
    RetriesExhausted,
    SendTimeout,
    SessionError,
    TransportFailure,
    TransportNotReady,
)
from wsession.network.events import EventEmitter, SessionEvent
from wsession.network.outbound import Priority
from wsession.network.pool import SessionPool
from wsession.network.session import QueueSizes, Session, SessionStats, normalize_url
from wsession.network.session_state import SessionState
from wsession.network.transport.base import BaseTransport, CloseInfo, OpenInfo
from wsession.network.transport.dummy import DummyTransport
from wsession.network.transport.websocket import WebSocketTransport

__all__ = [
    "BaseTransport",
    "CloseInfo",
    "Codec",
    "ConnectionTimeout",
    "DummyTransport",
    "EventEmitter",
    "OpenInfo",
    "Priority",
    "QueueSizes",
    "RetriesExhausted",
    "SendTimeout",
    "Session",
    "SessionError",
    "SessionEvent",
    "SessionPool",
    "SessionState",
    "SessionStats",
    "TransportFailure",
    "TransportNotReady",
    "WebSocketTransport",
    "normalize_url",
]
