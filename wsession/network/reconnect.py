"""Exponential backoff with jitter for reconnection attempts."""

from __future__ import annotations

import random
from typing import Optional

from wsession.config import SessionSettings


class ReconnectPolicy:
    """Attempt counter plus growing delay; both reset only after a successful open.

    ``next_delay_ms`` grows the delay by ``reconnect_backoff_factor`` (capped at
    ``max_reconnect_delay_ms``) and adds jitter drawn from
    ``[0, delay * reconnect_jitter)``, so a scheduled delay never exceeds
    ``max_reconnect_delay_ms * (1 + reconnect_jitter)``.
    """

    def __init__(self, settings: SessionSettings, rng: Optional[random.Random] = None) -> None:
        self._base_delay = float(settings.reconnect_delay_ms)
        self._max_delay = float(settings.max_reconnect_delay_ms)
        self._factor = float(settings.reconnect_backoff_factor)
        self._jitter = float(settings.reconnect_jitter)
        self._max_retries = settings.max_retries
        self._rng = rng or random.Random()
        self.attempts = 0
        self.current_delay_ms = self._base_delay

    @property
    def max_retries(self) -> Optional[int]:
        return self._max_retries

    @property
    def exhausted(self) -> bool:
        return self._max_retries is not None and self.attempts >= self._max_retries

    def next_delay_ms(self) -> Optional[float]:
        """Advance to the next attempt; ``None`` once the retry budget is spent."""

        if self.exhausted:
            return None
        self.attempts += 1
        self.current_delay_ms = min(self.current_delay_ms * self._factor, self._max_delay)
        jitter = self.current_delay_ms * self._jitter * self._rng.random()
        return self.current_delay_ms + jitter

    def reset(self) -> None:
        self.attempts = 0
        self.current_delay_ms = self._base_delay
