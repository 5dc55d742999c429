import asyncio
import json

import pytest

from shelterwatch.realtime import DETECTION, GAP, Broadcaster, Notification, format_sse


@pytest.mark.asyncio
async def test_connected_subscriber_receives_each_event_once(store, make_candidate) -> None:
    broadcaster = Broadcaster()
    store.add_listener(broadcaster.publish)
    subscription = broadcaster.subscribe()

    event = store.insert(make_candidate())

    notification = await asyncio.wait_for(subscription.get(), timeout=1)
    assert notification == Notification(kind=DETECTION, event=event)
    assert subscription.pending() == 0


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_replay_but_sees_catch_up(store, make_candidate) -> None:
    broadcaster = Broadcaster()
    store.add_listener(broadcaster.publish)
    event = store.insert(make_candidate())

    late = broadcaster.subscribe()

    assert late.pending() == 0
    assert event.id in [item.id for item in store.query(limit=50)]


@pytest.mark.asyncio
async def test_overflow_drops_oldest_and_keeps_delivering(make_event) -> None:
    broadcaster = Broadcaster(queue_size=2)
    slow = broadcaster.subscribe()
    fast = broadcaster.subscribe(maxsize=10)
    events = [make_event() for _ in range(5)]

    for event in events:
        broadcaster.publish(event)

    assert slow.dropped == 3
    assert fast.dropped == 0
    gap = await slow.get()
    assert gap.kind == GAP and gap.dropped == 3
    assert (await slow.get()).event == events[3]
    assert (await slow.get()).event == events[4]

    latest = make_event()
    broadcaster.publish(latest)
    assert (await asyncio.wait_for(slow.get(), timeout=1)).event == latest
    assert broadcaster.stats() == {"subscribers": 2, "published": 6, "dropped": 3}


@pytest.mark.asyncio
async def test_unsubscribe_does_not_affect_others(make_event) -> None:
    broadcaster = Broadcaster()
    leaving = broadcaster.subscribe()
    staying = broadcaster.subscribe()

    broadcaster.unsubscribe(leaving)
    event = make_event()
    broadcaster.publish(event)

    assert leaving.closed
    assert leaving.pending() == 0
    assert (await staying.get()).event == event
    assert broadcaster.subscriber_count == 1


@pytest.mark.asyncio
async def test_publish_from_worker_thread_preserves_order(make_event) -> None:
    broadcaster = Broadcaster()
    subscription = broadcaster.subscribe()
    events = [make_event() for _ in range(3)]

    def publish_all():
        for event in events:
            broadcaster.publish(event)

    await asyncio.to_thread(publish_all)

    received = [(await asyncio.wait_for(subscription.get(), timeout=1)).event for _ in events]
    assert received == events


@pytest.mark.asyncio
async def test_stream_yields_sse_frames_and_keepalive(make_event) -> None:
    broadcaster = Broadcaster()
    subscription = broadcaster.subscribe()
    frames = broadcaster.stream(subscription, keepalive=0.01)

    assert await frames.__anext__() == ": keepalive\n\n"

    event = make_event()
    broadcaster.publish(event)
    frame = await frames.__anext__()
    lines = frame.strip().split("\n")
    assert lines[0] == f"id: {event.id}"
    assert lines[1] == "event: detection"
    assert json.loads(lines[2][len("data: "):]) == event.to_dict()
    await frames.aclose()


def test_gap_frame_format() -> None:
    assert format_sse(Notification(kind=GAP, dropped=4)) == 'event: gap\ndata: {"dropped": 4}\n\n'
