"""Connection state tracking for a resilient session."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

LOGGER = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    """Observable connection state labels."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    EXHAUSTED = "exhausted"


_ALLOWED: dict[SessionState, set[SessionState]] = {
    SessionState.CLOSED: {SessionState.CONNECTING, SessionState.RECONNECTING, SessionState.EXHAUSTED},
    SessionState.CONNECTING: {SessionState.OPEN, SessionState.RECONNECTING, SessionState.CLOSED, SessionState.EXHAUSTED},
    SessionState.OPEN: {SessionState.CLOSED},
    SessionState.RECONNECTING: {SessionState.CONNECTING, SessionState.EXHAUSTED, SessionState.CLOSED},
    SessionState.EXHAUSTED: {SessionState.CLOSED},
}


@dataclass
class StateTracker:
    """Single source of truth for the session state label."""

    state: SessionState = SessionState.CLOSED
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    transitions: int = 0

    def transition(self, next_state: SessionState) -> None:
        """Move into ``next_state``, validating the move; same-state moves are no-ops."""

        if next_state is self.state:
            return
        if next_state not in _ALLOWED.get(self.state, set()):
            raise ValueError(f"Invalid transition {self.state.value} → {next_state.value}")
        LOGGER.debug("Session state %s → %s", self.state.value, next_state.value)
        self.state = next_state
        self.transitions += 1
        self.last_transition_at = datetime.now(tz=timezone.utc)

    def force(self, next_state: SessionState) -> None:
        """Set the state without validation (explicit close from any state)."""

        if next_state is self.state:
            return
        self.state = next_state
        self.transitions += 1
        self.last_transition_at = datetime.now(tz=timezone.utc)
