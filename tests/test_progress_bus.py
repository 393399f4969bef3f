"""Tests for the progress bus -- fan-out, scoped subscriptions, per-scan streams."""

import asyncio
import logging

import pytest

from diffguard.progress_bus import FAILED_PROGRESS, ProgressBroadcaster, ProgressEvent


def _event(scan_id="s1", progress=10, message="working"):
    return ProgressEvent(scan_id=scan_id, progress=progress, message=message)


def test_every_subscriber_receives_every_event():
    bus = ProgressBroadcaster()
    seen_a, seen_b = [], []
    bus.subscribe(seen_a.append)
    bus.subscribe(seen_b.append)

    bus.publish(_event("s1"))
    bus.publish(_event("s2"))

    assert [e.scan_id for e in seen_a] == ["s1", "s2"]
    assert [e.scan_id for e in seen_b] == ["s1", "s2"]


def test_subscription_context_manager_detaches():
    bus = ProgressBroadcaster()
    seen = []
    with bus.subscribe(seen.append) as sub:
        assert bus.subscriber_count == 1
        bus.publish(_event())
    assert sub.closed
    assert bus.subscriber_count == 0
    bus.publish(_event())
    assert len(seen) == 1


def test_close_is_idempotent():
    bus = ProgressBroadcaster()
    sub = bus.subscribe(lambda e: None)
    sub.close()
    sub.close()
    assert bus.subscriber_count == 0


def test_failing_subscriber_does_not_break_others(caplog):
    bus = ProgressBroadcaster()
    seen = []

    def boom(event):
        raise RuntimeError("subscriber exploded")

    bus.subscribe(boom)
    bus.subscribe(seen.append)

    with caplog.at_level(logging.ERROR, logger="diffguard.progress_bus"):
        bus.publish(_event())

    assert len(seen) == 1
    assert "Progress subscriber failed" in caplog.text


def test_event_terminal_flags():
    assert _event(progress=100).is_terminal
    assert _event(progress=FAILED_PROGRESS).is_terminal
    assert not _event(progress=99).is_terminal
    assert _event(progress=40, message="m").to_payload() == {"progress": 40, "message": "m"}


@pytest.mark.asyncio
async def test_stream_filters_by_scan_and_stops_after_terminal():
    bus = ProgressBroadcaster()
    stream = bus.open_stream("s1")

    bus.publish(_event("s1", 25, "found"))
    bus.publish(_event("s2", 50, "other scan"))
    bus.publish(_event("s1", 100, "done"))
    bus.publish(_event("s1", 100, "late duplicate"))

    received = [e async for e in stream]

    assert [(e.progress, e.message) for e in received] == [(25, "found"), (100, "done")]
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_drops_oldest_when_full():
    bus = ProgressBroadcaster()
    with bus.open_stream("s1", maxsize=2) as stream:
        for p in (10, 20, 30):
            bus.publish(_event("s1", p))
        first = await stream.get()
        second = await stream.get()
    assert (first.progress, second.progress) == (20, 30)


@pytest.mark.asyncio
async def test_bus_close_ends_open_streams():
    bus = ProgressBroadcaster()
    stream = bus.open_stream("s1")
    waiter = asyncio.create_task(stream.get())
    await asyncio.sleep(0)

    bus.close()

    assert await asyncio.wait_for(waiter, timeout=1) is None
    assert bus.closed
    assert bus.subscriber_count == 0


def test_publish_after_close_is_dropped():
    bus = ProgressBroadcaster()
    seen = []
    bus.subscribe(seen.append)
    bus.close()
    bus.publish(_event())
    assert seen == []
