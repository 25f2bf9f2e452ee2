from __future__ import annotations

import json

import pytest

from fleetsync.sync.notifications import NotificationHub, format_sse


def _decode(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: ") : -2])


def test_notify_without_subscribers_is_dropped():
    hub = NotificationHub()

    hub.notify("u1", {"type": "start"})

    assert hub.connection_count() == 0
    assert not hub.has_connection("u1")


@pytest.mark.asyncio
async def test_full_queue_drops_oldest_event():
    hub = NotificationHub(max_queue=2)
    queue = hub.connect("u1")

    for index in range(3):
        hub.notify("u1", {"type": "progress", "index": index})

    assert [queue.get_nowait()["index"] for _ in range(queue.qsize())] == [1, 2]


@pytest.mark.asyncio
async def test_notify_reaches_every_stream_of_the_user_only():
    hub = NotificationHub()
    first = hub.connect("u1")
    second = hub.connect("u1")
    other = hub.connect("u2")

    hub.notify("u1", {"type": "complete"})

    assert first.get_nowait()["type"] == "complete"
    assert second.get_nowait()["type"] == "complete"
    assert other.empty()
    assert hub.connection_count() == 3

    hub.disconnect("u1", first)
    hub.disconnect("u1", second)
    assert not hub.has_connection("u1")


@pytest.mark.asyncio
async def test_stream_sends_greeting_then_events_and_disconnects_on_close():
    hub = NotificationHub()
    stream = hub.stream("u1", keepalive=5.0)

    hello = _decode(await stream.__anext__())
    assert hello["type"] == "connection_established"
    assert hub.has_connection("u1")

    hub.notify("u1", {"type": "start", "operation": "location_refresh"})
    event = _decode(await stream.__anext__())
    assert event["type"] == "start"
    assert "timestamp" in event

    await stream.aclose()
    assert not hub.has_connection("u1")


@pytest.mark.asyncio
async def test_idle_stream_emits_keepalive_comment():
    hub = NotificationHub()
    stream = hub.stream("u1", keepalive=0.01)

    await stream.__anext__()
    assert await stream.__anext__() == ": keep-alive\n\n"

    await stream.aclose()


def test_format_sse_serializes_unknown_types_as_strings():
    frame = format_sse({"type": "complete", "stats": {"duration": 1.5}, "when": object})

    payload = _decode(frame)
    assert payload["stats"] == {"duration": 1.5}
    assert isinstance(payload["when"], str)
