"""Error types surfaced through the session ``error`` and ``exhausted`` events."""

from __future__ import annotations

from typing import Optional


class SessionError(RuntimeError):
    """Base class for failures reported by a session."""


class ConnectionTimeout(SessionError):
    """Raised when the transport does not open within ``connection_timeout_ms``."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Connection timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class TransportFailure(SessionError):
    """Wraps an error reported by the transport handle."""

    def __init__(self, cause: Optional[BaseException], *, before_open: bool) -> None:
        stage = "before open" if before_open else "while open"
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Transport failed {stage}{detail}")
        self.cause = cause
        self.before_open = before_open
        if cause is not None:
            self.__cause__ = cause


class SendTimeout(SessionError):
    """No inbound traffic confirmed liveness after a send."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Send timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class RetriesExhausted(SessionError):
    """Automatic reconnection gave up after ``max_retries`` attempts."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Max reconnect retries reached ({attempts})")
        self.attempts = attempts


class TransportNotReady(SessionError):
    """Raised when transport IO is invoked without an established connection."""
