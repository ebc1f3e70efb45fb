"""Resilient session over an unreliable message transport.

The session owns exactly one transport handle at a time and coordinates:
- connection lifecycle and the reconnection policy
- prioritised, rate-limited, backpressure-aware outbound delivery
- inbound decoding and batching
- heartbeat and inactivity supervision

Everything runs on the event loop from timer and transport callbacks; the
only suspension point is the binary decode of inbound frames.
"""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from itertools import count
from typing import Any, Optional

from wsession.config import SessionSettings, get_settings
from wsession.network.codec import Codec, Deserializer, Serializer, is_binary
from wsession.network.errors import (
    ConnectionTimeout,
    RetriesExhausted,
    SendTimeout,
    SessionError,
    TransportFailure,
)
from wsession.network.events import EventEmitter, Listener, SessionEvent
from wsession.network.heartbeat import Heartbeat, InactivityMonitor
from wsession.network.inbound import BatchSlot, InboundBatcher
from wsession.network.outbound import OutboundQueue, Priority, RateLimiter
from wsession.network.reconnect import ReconnectPolicy
from wsession.network.session_state import SessionState, StateTracker
from wsession.network.timers import TimerSet
from wsession.network.transport.base import (
    BaseTransport,
    CloseInfo,
    OpenInfo,
    TransportFactory,
    TransportHandlers,
)
from wsession.network.transport.websocket import WebSocketTransport

LOGGER = logging.getLogger(__name__)

CONNECT_TIMER = "connect-timeout"
RECONNECT_TIMER = "reconnect"
RECONNECT_THROTTLE_TIMER = "reconnect-throttle"
SEND_TIMER = "send-timeout"
DRAIN_TIMER = "drain"
CLOSE_FALLBACK_TIMER = "close-fallback"
DECODE_TASK_PREFIX = "decode-"
MIN_BACKPRESSURE_POLL_MS = 10

_SHORTHAND_URL = re.compile(r"^(wss?):(?!//)", re.IGNORECASE)


def normalize_url(raw: str) -> str:
    """Expand the ``ws:host`` shorthand to ``ws://host``."""

    return _SHORTHAND_URL.sub(lambda match: f"{match.group(1).lower()}://", raw.strip())


@dataclass(frozen=True)
class SessionStats:
    retry_count: int
    high_priority_queue_length: int
    normal_queue_length: int
    buffered_amount: int


@dataclass(frozen=True)
class QueueSizes:
    high_priority: int
    normal: int
    max_queue_size: int


class Session:
    """One durable logical connection presented over a replaceable transport."""

    def __init__(
        self,
        url: str,
        settings: Optional[SessionSettings] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        codec: Optional[Codec] = None,
        serialize: Optional[Serializer] = None,
        deserialize: Optional[Deserializer] = None,
        rng: Optional[random.Random] = None,
        online: bool = True,
        autostart: bool = True,
    ) -> None:
        self.url = normalize_url(url)
        self.settings = settings or get_settings()
        s = self.settings
        self._transport_factory: TransportFactory = transport_factory or WebSocketTransport
        self._codec = codec or Codec(serialize, deserialize, auto_json=not s.disable_auto_json)
        self._timers = TimerSet()
        self._events = EventEmitter()
        self._tracker = StateTracker()
        self._policy = ReconnectPolicy(s, rng)
        self._queue = OutboundQueue(s.max_queue_size)
        self._limiter = RateLimiter(s.rate_limit_interval_ms, self._timers.now)
        self._heartbeat = Heartbeat(
            self._timers,
            interval_ms=s.heartbeat_interval_ms,
            message=s.heartbeat_message,
            send=self._send_control,
            is_open=self.is_open,
        )
        self._inactivity = InactivityMonitor(
            self._timers,
            timeout_ms=s.inactivity_timeout_ms,
            on_idle=self._on_idle,
        )
        self._batcher = InboundBatcher(
            self._timers,
            interval_ms=s.batch_interval_ms,
            emit=self._emit_batch,
            throttle_ms=s.throttle_message_ms,
        )
        self._handle: Optional[BaseTransport] = None
        self._online = online
        self._closed_by_user = False
        self._deferred_connect = False
        self._decode_ids = count(1)
        self._last_reconnect_at: Optional[float] = None
        self.last_reconnect_delay_ms: Optional[float] = None
        if autostart:
            self.start()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._tracker.state

    def status(self) -> str:
        return self._tracker.state.value

    def is_open(self) -> bool:
        handle = self._handle
        return self._tracker.state is SessionState.OPEN and handle is not None and handle.is_open

    def start(self) -> None:
        """Begin connecting; called by the constructor unless ``autostart`` is off."""

        if self._handle is not None or self._tracker.state is SessionState.OPEN:
            return
        if self._tracker.state is SessionState.EXHAUSTED:
            LOGGER.warning("Reconnection retries exhausted; create a new session instead")
            return
        self._closed_by_user = False
        self._policy.reset()
        self._last_reconnect_at = None
        self._connect()

    def send(self, payload: Any, priority: str | Priority = Priority.NORMAL) -> bool:
        """Dispatch or queue ``payload``; ``False`` only when its lane is full."""

        lane = Priority.parse(priority)
        data = payload if is_binary(payload) else self._codec.encode(payload)
        handle = self._handle
        if handle is not None and not len(self._queue) and self._can_dispatch(handle):
            if self._dispatch(handle, data):
                return True
        return self._enqueue(data, lane)

    def close(self) -> None:
        """Stop the session: cancel every timer and close any live or half-open handle.

        Idempotent and silent: no lifecycle events follow and pending async
        listener tasks are cancelled. Queued messages are left in place and
        are discarded with the session.
        """

        first = not self._closed_by_user
        self._closed_by_user = True
        self._deferred_connect = False
        self._teardown_handle(reason="session closed")
        self._timers.cancel_all()
        self._events.cancel_pending()
        self._batcher.clear()
        self._tracker.force(SessionState.CLOSED)
        if first:
            LOGGER.info("Session to %s closed by caller", self.url)

    def set_online(self, online: bool) -> None:
        """Feed a reachability change into the session."""

        online = bool(online)
        if online == self._online:
            return
        self._online = online
        if not online:
            LOGGER.info("Network offline")
            return
        LOGGER.info("Network online")
        if self._closed_by_user or self._handle is not None:
            return
        if self._deferred_connect:
            self._connect()
            return
        if (
            self.settings.reconnect
            and self._tracker.state in {SessionState.CLOSED, SessionState.RECONNECTING}
            and not self._timers.is_active(RECONNECT_TIMER)
            and not self._timers.is_active(RECONNECT_THROTTLE_TIMER)
        ):
            self._schedule_reconnect()

    @property
    def online(self) -> bool:
        return self._online

    def get_stats(self) -> SessionStats:
        high, normal = self._queue.sizes()
        handle = self._handle
        return SessionStats(
            retry_count=self._policy.attempts,
            high_priority_queue_length=high,
            normal_queue_length=normal,
            buffered_amount=handle.buffered_amount if handle is not None else 0,
        )

    def get_queue_sizes(self) -> QueueSizes:
        high, normal = self._queue.sizes()
        return QueueSizes(high_priority=high, normal=normal, max_queue_size=self._queue.max_size)

    def on(self, event: str | SessionEvent, listener: Listener) -> "Session":
        self._events.on(event, listener)
        return self

    def off(self, event: str | SessionEvent, listener: Optional[Listener] = None) -> "Session":
        self._events.off(event, listener)
        return self

    def once(self, event: str | SessionEvent, listener: Listener) -> "Session":
        self._events.once(event, listener)
        return self

    def on_reconnect(self, listener: Callable[[int], Any]) -> "Session":
        return self.on(SessionEvent.RECONNECTING, listener)

    def pending_timers(self) -> set[str]:
        return self._timers.active()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        self._timers.cancel(RECONNECT_TIMER)
        self._timers.cancel(RECONNECT_THROTTLE_TIMER)
        if not self._online:
            LOGGER.info("Offline, skipping connect to %s", self.url)
            self._deferred_connect = True
            return
        self._deferred_connect = False
        self._teardown_handle(reason="superseded")
        self._tracker.transition(SessionState.CONNECTING)
        LOGGER.info("Connecting to %s", self.url)
        self._events.emit(SessionEvent.CONNECTING)
        if self._closed_by_user or self._tracker.state is not SessionState.CONNECTING:
            return

        handle = self._transport_factory(self.url, self.settings.protocols)
        handle.attach(
            TransportHandlers(
                on_ready=partial(self._on_ready, handle),
                on_data=partial(self._on_data, handle),
                on_closed=partial(self._on_closed, handle),
                on_failed=partial(self._on_failed, handle),
            )
        )
        self._handle = handle
        self._timers.call_later(
            CONNECT_TIMER,
            self.settings.connection_timeout_ms,
            partial(self._on_connect_timeout, handle),
        )
        try:
            handle.open()
        except Exception as exc:  # noqa: BLE001
            self._on_failed(handle, exc)

    def _on_ready(self, handle: BaseTransport, info: OpenInfo) -> None:
        if handle is not self._handle:
            return
        self._timers.cancel(CONNECT_TIMER)
        self._policy.reset()
        self._tracker.transition(SessionState.OPEN)
        LOGGER.info("Connected to %s", self.url)
        self._events.emit(SessionEvent.OPEN, info)
        if handle is not self._handle:
            return
        self._heartbeat.start()
        self._drain()
        self._inactivity.touch()

    def _on_data(self, handle: BaseTransport, data: str | bytes) -> None:
        if handle is not self._handle:
            return
        self._inactivity.touch()
        self._timers.cancel(SEND_TIMER)

        s = self.settings
        if isinstance(data, str):
            if s.heartbeat_message and data == s.heartbeat_message:
                if s.heartbeat_reply:
                    self._send_control(s.heartbeat_reply)
                    LOGGER.debug("Auto %s sent", s.heartbeat_reply)
                return
            if s.heartbeat_reply and data == s.heartbeat_reply:
                LOGGER.debug("%s received", s.heartbeat_reply.capitalize())
                return
            self._batcher.push(self._codec.decode(data))
            return

        slot = self._batcher.reserve()
        self._timers.spawn(f"{DECODE_TASK_PREFIX}{next(self._decode_ids)}", self._decode_binary(slot, data))

    async def _decode_binary(self, slot: BatchSlot, data: bytes) -> None:
        try:
            value = await self._codec.decode_binary(data)
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Binary decode failed, delivering raw payload: %s", exc)
            value = data
        except BaseException:
            self._batcher.discard(slot)
            raise
        self._events.emit(SessionEvent.BINARY_MESSAGE, value)
        self._batcher.fill(slot, value)

    def _on_failed(self, handle: BaseTransport, exc: BaseException) -> None:
        if handle is not self._handle:
            return
        if self._tracker.state is SessionState.CONNECTING:
            self._on_establish_failure(handle, TransportFailure(exc, before_open=True))
            return
        error = TransportFailure(exc, before_open=False)
        LOGGER.warning("Transport error: %s", exc)
        self._events.emit(SessionEvent.ERROR, error)
        if handle is self._handle:
            self._close_handle(handle, reason="transport error")

    def _on_closed(self, handle: BaseTransport, info: CloseInfo) -> None:
        if handle is not self._handle:
            return
        if self._tracker.state is SessionState.CONNECTING:
            cause = ConnectionError(f"closed before open (code={info.code}, reason={info.reason!r})")
            self._on_establish_failure(handle, TransportFailure(cause, before_open=True))
            return
        self._handle = None
        handle.detach()
        self._disarm_connection_timers()
        self._tracker.transition(SessionState.CLOSED)
        LOGGER.info("Connection closed code=%s reason=%s", info.code, info.reason or "-")
        self._events.emit(SessionEvent.CLOSE, info)
        if self.settings.reconnect and not self._closed_by_user and self._handle is None:
            self._schedule_reconnect()

    def _on_connect_timeout(self, handle: BaseTransport) -> None:
        if handle is not self._handle:
            return
        LOGGER.warning("Connection timeout after %sms", self.settings.connection_timeout_ms)
        self._on_establish_failure(handle, ConnectionTimeout(self.settings.connection_timeout_ms))

    def _on_establish_failure(self, handle: BaseTransport, error: SessionError) -> None:
        self._teardown_handle(reason="establishment failed")
        LOGGER.warning("Connection attempt failed: %s", error)
        self._events.emit(SessionEvent.ERROR, error)
        if self._closed_by_user or self._handle is not None:
            return
        if self.settings.reconnect:
            self._schedule_reconnect()
        else:
            self._tracker.transition(SessionState.CLOSED)

    def _on_idle(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._close_handle(handle, reason="inactivity timeout")

    def _close_handle(self, handle: BaseTransport, *, reason: str) -> None:
        """Close ``handle`` but keep listening so its close drives the normal transition."""

        self._heartbeat.stop()
        self._inactivity.disarm()
        self._timers.cancel(SEND_TIMER)
        self._timers.cancel(DRAIN_TIMER)
        try:
            handle.close(1000, reason)
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)
        self._timers.call_later(
            CLOSE_FALLBACK_TIMER,
            self.settings.connection_timeout_ms,
            partial(self._on_closed, handle, CloseInfo(code=1006, reason=f"{reason}; close not confirmed")),
        )

    def _teardown_handle(self, *, reason: str) -> None:
        """Detach and close the current handle so nothing it reports reaches the session."""

        handle = self._handle
        self._handle = None
        self._disarm_connection_timers()
        if handle is None:
            return
        handle.detach()
        try:
            handle.close(1000, reason)
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)

    def _disarm_connection_timers(self) -> None:
        self._heartbeat.stop()
        self._inactivity.disarm()
        for name in (CONNECT_TIMER, SEND_TIMER, DRAIN_TIMER, CLOSE_FALLBACK_TIMER):
            self._timers.cancel(name)

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        if self._closed_by_user:
            return
        if self._policy.exhausted:
            self._exhaust()
            return
        self._tracker.transition(SessionState.RECONNECTING)

        throttle_ms = self.settings.throttle_reconnect_ms
        if throttle_ms > 0 and self._last_reconnect_at is not None:
            wait_ms = throttle_ms - (self._timers.now() - self._last_reconnect_at) * 1000
            if wait_ms > 0:
                LOGGER.debug("Reconnect throttled for %.0fms", wait_ms)
                self._timers.call_later(RECONNECT_THROTTLE_TIMER, wait_ms, self._schedule_reconnect)
                return

        delay = self._policy.next_delay_ms()
        if delay is None:
            self._exhaust()
            return

        attempt = self._policy.attempts
        self._last_reconnect_at = self._timers.now()
        self.last_reconnect_delay_ms = delay
        LOGGER.info("Reconnect attempt %s in %.0fms", attempt, delay)
        self._timers.call_later(RECONNECT_TIMER, delay, self._reconnect_due)
        self._events.emit(SessionEvent.RECONNECTING, attempt)

    def _exhaust(self) -> None:
        error = RetriesExhausted(self._policy.attempts)
        LOGGER.warning("Max reconnect retries reached (%s)", self._policy.attempts)
        self._tracker.transition(SessionState.EXHAUSTED)
        self._events.emit(SessionEvent.EXHAUSTED, error)

    def _reconnect_due(self) -> None:
        if self._closed_by_user:
            return
        self._connect()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _backpressured(self, handle: BaseTransport) -> bool:
        s = self.settings
        return s.adaptive_backpressure and handle.buffered_amount >= s.backpressure_threshold_bytes

    def _can_dispatch(self, handle: BaseTransport) -> bool:
        return self.is_open() and not self._backpressured(handle) and self._limiter.ready()

    def _dispatch(self, handle: BaseTransport, data: Any) -> bool:
        if not isinstance(data, str) and not is_binary(data):
            data = str(data)
        try:
            handle.send(data)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Transport send failed: %s", exc)
            return False
        self._limiter.mark()
        LOGGER.debug("Sent message")
        if self.settings.send_timeout_ms > 0:
            self._timers.call_later(SEND_TIMER, self.settings.send_timeout_ms, self._on_send_timeout)
        return True

    def _enqueue(self, data: Any, lane: Priority) -> bool:
        if not self._queue.offer(data, lane):
            LOGGER.warning("Queue full, dropping message (%s priority)", lane.value)
            self._events.emit(SessionEvent.QUEUE_OVERFLOW, lane)
            return False
        LOGGER.debug("Queued message (%s priority)", lane.value)
        self._schedule_drain()
        return True

    def _schedule_drain(self) -> None:
        handle = self._handle
        if handle is None or not self.is_open() or self._timers.is_active(DRAIN_TIMER):
            return
        if self._backpressured(handle):
            delay = max(MIN_BACKPRESSURE_POLL_MS, self.settings.rate_limit_interval_ms)
        else:
            delay = self._limiter.remaining_ms()
        self._timers.call_later(DRAIN_TIMER, delay, self._drain)

    def _drain(self) -> None:
        """Send queued entries, high lane first, until empty, rate limited or backpressured."""

        self._timers.cancel(DRAIN_TIMER)
        handle = self._handle
        if handle is None or not self.is_open():
            return
        self._queue.trim_overflow()
        while len(self._queue):
            if not self._limiter.ready():
                self._timers.call_later(DRAIN_TIMER, self._limiter.remaining_ms(), self._drain)
                return
            if self._backpressured(handle):
                LOGGER.debug("Backpressure detected, pause sending")
                self._timers.call_later(
                    DRAIN_TIMER,
                    max(MIN_BACKPRESSURE_POLL_MS, self.settings.rate_limit_interval_ms),
                    self._drain,
                )
                return
            entry = self._queue.pop()
            if entry is None:
                return
            if not self._dispatch(handle, entry.payload):
                self._queue.push_front(entry)
                return
            LOGGER.debug("Sent queued message (%s priority)", entry.priority.value)

    def _send_control(self, message: str) -> None:
        handle = self._handle
        if handle is None or not self.is_open():
            return
        try:
            handle.send(message)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Control frame send failed: %s", exc)

    def _on_send_timeout(self) -> None:
        LOGGER.warning("Send timeout occurred after %sms", self.settings.send_timeout_ms)
        self._events.emit(SessionEvent.ERROR, SendTimeout(self.settings.send_timeout_ms))

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _emit_batch(self, batch: list[Any]) -> None:
        self._events.emit(SessionEvent.MESSAGE_BATCH, batch)
