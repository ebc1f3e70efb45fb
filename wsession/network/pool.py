"""Caller-owned registry of named sessions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional

from wsession.config import SessionSettings
from wsession.network.session import Session

LOGGER = logging.getLogger(__name__)


class SessionPool:
    """Maps names to sessions so one logical connection is shared per name."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def get_or_create(
        self,
        name: str,
        url: str,
        settings: Optional[SessionSettings] = None,
        **kwargs: Any,
    ) -> Session:
        existing = self._sessions.get(name)
        if existing is not None:
            return existing
        session = Session(url, settings, **kwargs)
        self._sessions[name] = session
        LOGGER.debug("Pooled session %s -> %s", name, session.url)
        return session

    def get(self, name: str) -> Optional[Session]:
        return self._sessions.get(name)

    def remove(self, name: str, *, close: bool = True) -> Optional[Session]:
        session = self._sessions.pop(name, None)
        if session is not None and close:
            session.close()
        return session

    def close_all(self) -> int:
        count = len(self._sessions)
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
        if count:
            LOGGER.info("Closed all %s pooled sessions", count)
        return count

    def names(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, name: object) -> bool:
        return name in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
