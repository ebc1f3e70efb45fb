"""Launcher entrypoint: open one session from settings and keep it alive."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any, Optional

from wsession.config import SessionSettings, get_settings
from wsession.network.events import SessionEvent
from wsession.network.session import Session

LOGGER = logging.getLogger(__name__)


def _wire_logging(session: Session) -> None:
    session.on(SessionEvent.OPEN, lambda info: LOGGER.info("Session open (subprotocol=%s)", info.subprotocol))
    session.on(SessionEvent.CLOSE, lambda info: LOGGER.info("Session closed code=%s", info.code))
    session.on(SessionEvent.ERROR, lambda exc: LOGGER.warning("Session error: %s", exc))
    session.on_reconnect(lambda attempt: LOGGER.info("Reconnecting (attempt %s)", attempt))
    session.on(SessionEvent.EXHAUSTED, lambda exc: LOGGER.error("%s; restart required", exc))

    def _batch(batch: list[Any]) -> None:
        for item in batch:
            LOGGER.info("Received: %s", item)

    session.on(SessionEvent.MESSAGE_BATCH, _batch)


async def run_forever(url: Optional[str] = None, settings: Optional[SessionSettings] = None) -> None:
    """Open a session and log its traffic until cancelled."""

    settings = settings or get_settings()
    session = Session(url or settings.url, settings)
    _wire_logging(session)
    try:
        await asyncio.Future()  # block until cancelled
    except asyncio.CancelledError:
        LOGGER.info("Session shutdown requested")
        raise
    finally:
        session.close()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Open a resilient WebSocket session and log its traffic.")
    parser.add_argument("--url", default=None, help="Endpoint to connect to (overrides settings/env).")
    parser.add_argument(
        "--log-level",
        choices=["critical", "error", "warning", "info", "debug"],
        default=None,
        help="Log level (overrides settings/env).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    log_level = (args.log_level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(run_forever(args.url, settings))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
