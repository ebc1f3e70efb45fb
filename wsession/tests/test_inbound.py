import asyncio
import logging

import pytest

from wsession.config import SessionSettings
from wsession.network.events import SessionEvent
from wsession.network.inbound import InboundBatcher
from wsession.network.session import Session
from wsession.network.timers import TimerSet
from wsession.network.transport.dummy import DummyTransport


def _settings(**overrides) -> SessionSettings:
    values = dict(
        heartbeat_interval_ms=0,
        inactivity_timeout_ms=0,
        send_timeout_ms=0,
        rate_limit_interval_ms=0,
        batch_interval_ms=50,
        reconnect_delay_ms=10,
        reconnect_jitter=0.0,
    )
    values.update(overrides)
    return SessionSettings(**values)


class _Factory:
    def __init__(self) -> None:
        self.created: list[DummyTransport] = []

    def __call__(self, url, protocols):
        transport = DummyTransport(url, protocols)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> DummyTransport:
        return self.created[-1]


async def _wait_for(predicate, *, timeout: float = 0.5, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


async def _open_session(**overrides):
    factory = _Factory()
    session = Session("ws://example", _settings(**overrides), transport_factory=factory)
    batches: list[list] = []
    session.on(SessionEvent.MESSAGE_BATCH, batches.append)
    factory.last.simulate_open()
    return session, factory.last, batches


@pytest.mark.asyncio
async def test_burst_is_delivered_as_one_batch():
    session, transport, batches = await _open_session()
    try:
        transport.simulate_message('{"n": 1}')
        await asyncio.sleep(0.003)
        transport.simulate_message('{"n": 2}')
        await asyncio.sleep(0.003)
        transport.simulate_message('{"n": 3}')

        assert batches == []
        assert await _wait_for(lambda: batches)
        await asyncio.sleep(0.06)
        assert batches == [[{"n": 1}, {"n": 2}, {"n": 3}]]
    finally:
        session.close()


@pytest.mark.asyncio
async def test_binary_keeps_arrival_order_ahead_of_later_text():
    session, transport, batches = await _open_session(batch_interval_ms=5)
    binary = []
    session.on(SessionEvent.BINARY_MESSAGE, binary.append)
    try:
        transport.simulate_message(b'{"kind": "binary"}')
        transport.simulate_message('"text"')

        assert await _wait_for(lambda: sum(len(batch) for batch in batches) == 2)
        flattened = [item for batch in batches for item in batch]
        assert flattened == [{"kind": "binary"}, "text"]
        assert binary == [{"kind": "binary"}]
    finally:
        session.close()


@pytest.mark.asyncio
async def test_undecodable_binary_is_still_delivered():
    session, transport, batches = await _open_session(batch_interval_ms=5)
    try:
        transport.simulate_message(b"\xff\xfeplain")
        assert await _wait_for(lambda: batches)
        assert batches[0] == ["\ufffd\ufffdplain"]
    finally:
        session.close()


@pytest.mark.asyncio
async def test_ping_is_answered_and_not_batched():
    session, transport, batches = await _open_session(batch_interval_ms=5)
    try:
        transport.simulate_message("ping")
        assert transport.sent == ["pong"]

        await asyncio.sleep(0.03)
        assert batches == []
    finally:
        session.close()


@pytest.mark.asyncio
async def test_pong_is_logged_and_not_batched(caplog):
    session, transport, batches = await _open_session(batch_interval_ms=5)
    try:
        with caplog.at_level(logging.DEBUG, logger="wsession.network.session"):
            transport.simulate_message("pong")
        assert "Pong received" in caplog.text
        assert transport.sent == []

        await asyncio.sleep(0.03)
        assert batches == []
    finally:
        session.close()


@pytest.mark.asyncio
async def test_disable_auto_json_delivers_raw_text():
    session, transport, batches = await _open_session(batch_interval_ms=5, disable_auto_json=True)
    try:
        transport.simulate_message('{"raw": true}')
        assert await _wait_for(lambda: batches)
        assert batches == [['{"raw": true}']]

        session.send({"a": 1})
        assert transport.sent == ["{'a': 1}"]
    finally:
        session.close()


@pytest.mark.asyncio
async def test_custom_deserializer_applies_to_text():
    factory = _Factory()
    session = Session(
        "ws://example",
        _settings(batch_interval_ms=5),
        transport_factory=factory,
        deserialize=str.upper,
    )
    batches = []
    session.on(SessionEvent.MESSAGE_BATCH, batches.append)
    try:
        factory.last.simulate_open()
        factory.last.simulate_message("hello")
        assert await _wait_for(lambda: batches)
        assert batches == [["HELLO"]]
    finally:
        session.close()


@pytest.mark.asyncio
async def test_heartbeat_sends_keepalive_while_open():
    session, transport, _ = await _open_session(heartbeat_interval_ms=20)
    try:
        assert await _wait_for(lambda: transport.sent.count("ping") >= 2)
        assert "heartbeat" in session.pending_timers()
    finally:
        session.close()
    assert "heartbeat" not in session.pending_timers()


@pytest.mark.asyncio
async def test_message_throttle_spaces_batches():
    session, transport, batches = await _open_session(batch_interval_ms=5, throttle_message_ms=60)
    loop = asyncio.get_running_loop()
    stamps = []
    session.on(SessionEvent.MESSAGE_BATCH, lambda batch: stamps.append(loop.time()))
    try:
        transport.simulate_message('"a"')
        assert await _wait_for(lambda: len(batches) == 1)
        transport.simulate_message('"b"')
        assert await _wait_for(lambda: len(batches) == 2)

        assert batches == [["a"], ["b"]]
        assert stamps[1] - stamps[0] >= 0.06 - 1e-3
    finally:
        session.close()


@pytest.mark.asyncio
async def test_batcher_holds_filled_slots_behind_pending_one():
    timers = TimerSet()
    emitted = []
    batcher = InboundBatcher(timers, interval_ms=1, emit=emitted.append)

    slot = batcher.reserve()
    batcher.push("later")
    await asyncio.sleep(0.01)
    assert emitted == []
    assert batcher.pending == 2

    batcher.fill(slot, "first")
    assert await _wait_for(lambda: emitted)
    assert emitted == [["first", "later"]]
    assert batcher.pending == 0


@pytest.mark.asyncio
async def test_batcher_discard_releases_followers():
    timers = TimerSet()
    emitted = []
    batcher = InboundBatcher(timers, interval_ms=1, emit=emitted.append)

    slot = batcher.reserve()
    batcher.push("after")
    batcher.discard(slot)

    assert await _wait_for(lambda: emitted)
    assert emitted == [["after"]]
