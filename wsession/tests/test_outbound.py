import asyncio

import pytest

from wsession.config import SessionSettings
from wsession.network.errors import SendTimeout
from wsession.network.events import SessionEvent
from wsession.network.outbound import OutboundQueue, Priority, QueueEntry, RateLimiter
from wsession.network.session import Session
from wsession.network.transport.dummy import DummyTransport


def _settings(**overrides) -> SessionSettings:
    values = dict(
        heartbeat_interval_ms=0,
        inactivity_timeout_ms=0,
        send_timeout_ms=0,
        rate_limit_interval_ms=0,
        batch_interval_ms=10,
        reconnect_delay_ms=10,
        reconnect_jitter=0.0,
    )
    values.update(overrides)
    return SessionSettings(**values)


class _TimedTransport(DummyTransport):
    def __init__(self, url, protocols=None) -> None:
        super().__init__(url, protocols)
        self.sent_at: list[float] = []

    def send(self, data) -> None:
        super().send(data)
        self.sent_at.append(asyncio.get_running_loop().time())


class _Factory:
    def __init__(self, transport_cls=DummyTransport) -> None:
        self.transport_cls = transport_cls
        self.created = []

    def __call__(self, url, protocols):
        transport = self.transport_cls(url, protocols)
        self.created.append(transport)
        return transport

    @property
    def last(self):
        return self.created[-1]


async def _wait_for(predicate, *, timeout: float = 0.5, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def test_priority_parse_defaults_to_normal():
    assert Priority.parse("high") is Priority.HIGH
    assert Priority.parse(" HIGH ") is Priority.HIGH
    assert Priority.parse("urgent") is Priority.NORMAL
    assert Priority.parse(None) is Priority.NORMAL


def test_queue_rejects_beyond_capacity_and_drains_high_first():
    queue = OutboundQueue(max_size=2)
    assert queue.offer("n1", Priority.NORMAL)
    assert queue.offer("n2", Priority.NORMAL)
    assert not queue.offer("n3", Priority.NORMAL)
    assert queue.offer("h1", Priority.HIGH)

    assert queue.sizes() == (1, 2)
    assert [queue.pop().payload for _ in range(3)] == ["h1", "n1", "n2"]
    assert queue.pop() is None


def test_queue_trims_entries_pushed_past_capacity():
    queue = OutboundQueue(max_size=1)
    queue.offer("kept", Priority.NORMAL)
    queue.push_front(QueueEntry(payload="returned", priority=Priority.NORMAL))

    assert queue.trim_overflow() == 1
    assert queue.pop().payload == "kept"


def test_rate_limiter_spacing():
    now = [10.0]
    limiter = RateLimiter(50, clock=lambda: now[0])
    assert limiter.ready()
    limiter.mark()
    assert not limiter.ready()
    now[0] += 0.03
    assert limiter.remaining_ms() == pytest.approx(20.0)
    now[0] += 0.025
    assert limiter.ready()


@pytest.mark.asyncio
async def test_second_send_overflows_single_slot_lane():
    session = Session("ws://example", _settings(max_queue_size=1), transport_factory=_Factory(), online=False)
    overflows = []
    session.on(SessionEvent.QUEUE_OVERFLOW, overflows.append)
    try:
        assert session.send("a", "normal") is True
        assert session.send("a", "normal") is False
        assert overflows == ["normal"]
        assert overflows[0] is Priority.NORMAL
        assert session.get_queue_sizes().normal == 1
    finally:
        session.close()


@pytest.mark.asyncio
async def test_exactly_the_excess_sends_are_rejected():
    session = Session("ws://example", _settings(max_queue_size=3), transport_factory=_Factory(), online=False)
    overflows = []
    session.on(SessionEvent.QUEUE_OVERFLOW, overflows.append)
    try:
        results = [session.send(index, priority="high") for index in range(5)]
        assert results == [True, True, True, False, False]
        assert overflows == [Priority.HIGH, Priority.HIGH]
        assert session.send("normal lane still free") is True

        sizes = session.get_queue_sizes()
        assert (sizes.high_priority, sizes.normal, sizes.max_queue_size) == (3, 1, 3)
    finally:
        session.close()


@pytest.mark.asyncio
async def test_high_priority_queued_later_is_sent_first():
    factory = _Factory()
    session = Session("ws://example", _settings(), transport_factory=factory)
    try:
        session.send("n1")
        session.send("n2")
        session.send("h1", priority="high")
        factory.last.simulate_open()

        assert factory.last.sent == ['"h1"', '"n1"', '"n2"']
    finally:
        session.close()


@pytest.mark.asyncio
async def test_sends_respect_rate_limit_interval():
    factory = _Factory(_TimedTransport)
    session = Session("ws://example", _settings(rate_limit_interval_ms=20), transport_factory=factory)
    try:
        session.send("queued-before-open")
        factory.last.simulate_open()
        for index in range(4):
            assert session.send(index) is True

        transport = factory.last
        assert await _wait_for(lambda: len(transport.sent) == 5, timeout=1.0)
        assert transport.sent == ['"queued-before-open"', "0", "1", "2", "3"]
        gaps = [later - earlier for earlier, later in zip(transport.sent_at, transport.sent_at[1:])]
        assert all(gap >= 0.02 - 1e-6 for gap in gaps)
    finally:
        session.close()


@pytest.mark.asyncio
async def test_backpressure_pauses_until_buffer_drains():
    factory = _Factory()
    session = Session("ws://example", _settings(), transport_factory=factory)
    try:
        transport = factory.last
        transport.simulate_open()
        transport.buffered = 2 * 1024 * 1024

        assert session.send("held") is True
        assert transport.sent == []
        assert session.get_stats().buffered_amount == 2 * 1024 * 1024
        assert session.get_stats().normal_queue_length == 1

        transport.buffered = 0
        assert await _wait_for(lambda: transport.sent == ['"held"'])
    finally:
        session.close()


@pytest.mark.asyncio
async def test_backpressure_ignored_when_not_adaptive():
    factory = _Factory()
    session = Session("ws://example", _settings(adaptive_backpressure=False), transport_factory=factory)
    try:
        factory.last.simulate_open()
        factory.last.buffered = 4 * 1024 * 1024
        assert session.send("through") is True
        assert factory.last.sent == ['"through"']
    finally:
        session.close()


@pytest.mark.asyncio
async def test_send_timeout_reports_non_fatal_error():
    factory = _Factory()
    session = Session("ws://example", _settings(send_timeout_ms=20), transport_factory=factory)
    errors = []
    session.on(SessionEvent.ERROR, errors.append)
    try:
        factory.last.simulate_open()
        session.send({"ping": True})

        assert await _wait_for(lambda: errors)
        assert isinstance(errors[0], SendTimeout)
        assert session.is_open()
        assert session.get_queue_sizes().normal == 0
    finally:
        session.close()


@pytest.mark.asyncio
async def test_inbound_traffic_clears_send_timeout():
    factory = _Factory()
    session = Session("ws://example", _settings(send_timeout_ms=30), transport_factory=factory)
    errors = []
    session.on(SessionEvent.ERROR, errors.append)
    try:
        factory.last.simulate_open()
        session.send("hello")
        factory.last.simulate_message('"reply"')
        await asyncio.sleep(0.06)
        assert errors == []
    finally:
        session.close()


@pytest.mark.asyncio
async def test_binary_payload_bypasses_codec():
    factory = _Factory()
    session = Session("ws://example", _settings(), transport_factory=factory)
    try:
        factory.last.simulate_open()
        session.send(b"\x00\x01")
        assert factory.last.sent == [b"\x00\x01"]
    finally:
        session.close()


@pytest.mark.asyncio
async def test_failed_dispatch_keeps_entry_queued():
    class _FlakyTransport(DummyTransport):
        fail = True

        def send(self, data) -> None:
            if self.fail:
                raise ConnectionResetError("write failed")
            super().send(data)

    factory = _Factory(_FlakyTransport)
    session = Session("ws://example", _settings(), transport_factory=factory)
    try:
        factory.last.simulate_open()
        assert session.send("retry-me") is True
        assert session.get_queue_sizes().normal == 1

        factory.last.fail = False
        session.send("next")
        assert await _wait_for(lambda: factory.last.sent == ['"retry-me"', '"next"'])
    finally:
        session.close()
