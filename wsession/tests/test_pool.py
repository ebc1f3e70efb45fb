import pytest

from wsession.config import SessionSettings
from wsession.network.pool import SessionPool
from wsession.network.transport.dummy import DummyTransport


def _settings() -> SessionSettings:
    return SessionSettings(heartbeat_interval_ms=0, inactivity_timeout_ms=0, send_timeout_ms=0)


@pytest.mark.asyncio
async def test_get_or_create_reuses_named_session():
    pool = SessionPool()
    created = []

    def _factory(url, protocols):
        transport = DummyTransport(url, protocols)
        created.append(transport)
        return transport

    try:
        first = pool.get_or_create("feed", "ws:example/feed", _settings(), transport_factory=_factory)
        again = pool.get_or_create("feed", "ws://other", _settings(), transport_factory=_factory)

        assert first is again
        assert first.url == "ws://example/feed"
        assert len(created) == 1
        assert "feed" in pool
        assert pool.names() == ["feed"]
        assert pool.get("missing") is None
    finally:
        pool.close_all()


@pytest.mark.asyncio
async def test_remove_closes_by_default():
    pool = SessionPool()
    kept = pool.get_or_create("a", "ws://a", _settings(), transport_factory=DummyTransport)
    dropped = pool.get_or_create("b", "ws://b", _settings(), transport_factory=DummyTransport)

    assert pool.remove("b") is dropped
    assert dropped.status() == "closed"
    assert pool.remove("a", close=False) is kept
    assert kept.status() == "connecting"
    assert len(pool) == 0
    kept.close()


@pytest.mark.asyncio
async def test_close_all_empties_pool():
    pool = SessionPool()
    sessions = [
        pool.get_or_create(name, f"ws://{name}", _settings(), transport_factory=DummyTransport)
        for name in ("x", "y")
    ]
    assert list(pool) == ["x", "y"]
    assert pool.close_all() == 2
    assert all(session.status() == "closed" for session in sessions)
    assert len(pool) == 0
