from __future__ import annotations

import asyncio
import logging
import threading
import time

import pytest

from tracing_sink.channel import BoundedChannel, ChannelClosed
from tracing_sink.diagnostics import Diagnostics
from tracing_sink.filters import FilterPolicy
from tracing_sink.handler import SlackHandler
from tracing_sink.models import EventRecord


def _make_handler(capacity: int, **policy_kwargs) -> tuple[SlackHandler, BoundedChannel[EventRecord], Diagnostics]:
    channel: BoundedChannel[EventRecord] = BoundedChannel(capacity)
    diagnostics = Diagnostics()
    policy = FilterPolicy.build(**({"min_level": "info"} | policy_kwargs))
    return SlackHandler(channel=channel, policy=policy, diagnostics=diagnostics), channel, diagnostics


@pytest.fixture
def logger():
    log = logging.getLogger("tests.hook")
    log.setLevel(logging.DEBUG)
    log.propagate = False
    yield log
    for handler in list(log.handlers):
        log.removeHandler(handler)
    log.propagate = True


def test_channel_try_send_reports_full_and_keeps_fifo_order():
    channel: BoundedChannel[int] = BoundedChannel(2)
    assert channel.try_send(1) is True
    assert channel.try_send(2) is True
    assert channel.try_send(3) is False
    assert len(channel) == 2

    async def drain() -> list[int | None]:
        return [await channel.recv(timeout=0.01) for _ in range(3)]

    assert asyncio.run(drain()) == [1, 2, None]


def test_channel_close_rejects_sends_but_drains_queued_items():
    channel: BoundedChannel[str] = BoundedChannel(4)
    channel.try_send("a")
    channel.close()

    with pytest.raises(ChannelClosed):
        channel.try_send("b")

    async def drain() -> None:
        assert await channel.recv() == "a"
        with pytest.raises(ChannelClosed):
            await channel.recv()

    asyncio.run(drain())


@pytest.mark.asyncio
async def test_channel_wakes_a_waiting_consumer_from_another_thread():
    channel: BoundedChannel[str] = BoundedChannel(4)

    def produce() -> None:
        time.sleep(0.05)
        channel.try_send("from-thread")

    thread = threading.Thread(target=produce)
    thread.start()
    try:
        assert await asyncio.wait_for(channel.recv(), timeout=2.0) == "from-thread"
    finally:
        thread.join()


def test_hook_drops_exactly_the_overflow_with_a_stalled_consumer(logger: logging.Logger):
    capacity, submitted = 5, 12
    handler, channel, diagnostics = _make_handler(capacity)
    logger.addHandler(handler)

    start = time.monotonic()
    for i in range(submitted):
        logger.error("event %d", i)
    elapsed = time.monotonic() - start

    assert diagnostics.get("events_dropped") == submitted - capacity
    assert diagnostics.get("events_accepted") == capacity
    assert len(channel) == capacity
    # Nothing waited on the consumer.
    assert elapsed < 1.0


def test_hook_never_blocks_concurrent_producer_threads(logger: logging.Logger):
    capacity, threads, per_thread = 10, 8, 50
    handler, channel, diagnostics = _make_handler(capacity)
    logger.addHandler(handler)

    def produce(n: int) -> None:
        for i in range(per_thread):
            logger.warning("thread %d event %d", n, i)

    workers = [threading.Thread(target=produce, args=(n,)) for n in range(threads)]
    for w in workers:
        w.start()
    for w in workers:
        w.join(timeout=5.0)
        assert not w.is_alive()

    total = threads * per_thread
    assert diagnostics.get("events_accepted") == capacity
    assert diagnostics.get("events_dropped") == total - capacity
    assert len(channel) == capacity


def test_hook_counts_filtered_events_and_forwards_accepted_ones(logger: logging.Logger):
    handler, channel, diagnostics = _make_handler(10, min_level="warn", pattern="db")
    logger.addHandler(handler)

    logger.info("db slow")
    logger.warning("db timeout")
    logger.warning("cache miss")

    assert diagnostics.get("events_filtered") == 2
    assert diagnostics.get("events_accepted") == 1
    assert len(channel) == 1


def test_hook_ignores_the_sinks_own_loggers():
    handler, channel, diagnostics = _make_handler(10, min_level="trace")
    internal = logging.getLogger("tracing_sink.worker")
    http = logging.getLogger("urllib3.connectionpool")
    record = internal.makeRecord(internal.name, logging.ERROR, __file__, 1, "delivery failed", (), None)
    http_record = http.makeRecord(http.name, logging.DEBUG, __file__, 1, "Starting new HTTPS connection", (), None)

    handler.handle(record)
    handler.handle(http_record)

    assert len(channel) == 0
    assert diagnostics.snapshot()["events_filtered"] == 0


def test_hook_drops_events_after_close(logger: logging.Logger):
    handler, channel, diagnostics = _make_handler(10)
    logger.addHandler(handler)

    handler.close()
    logger.error("too late")

    assert channel.closed
    assert diagnostics.get("events_rejected_closed") == 1
    assert diagnostics.get("events_accepted") == 0


def test_hook_never_raises_into_the_caller(logger: logging.Logger, monkeypatch: pytest.MonkeyPatch):
    handler, _channel, _diagnostics = _make_handler(10)
    logger.addHandler(handler)
    monkeypatch.setattr(logging, "raiseExceptions", False)

    def boom(*_args, **_kwargs):
        raise RuntimeError("capture exploded")

    monkeypatch.setattr("tracing_sink.handler.capture", boom)

    logger.error("still fine")
