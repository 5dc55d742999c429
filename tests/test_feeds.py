import asyncio
import json

import pytest

from shelterwatch.errors import TransientIOError
from shelterwatch.feeds import RemoteFeed, RemoteStream, notification_from_frame, parse_sse
from shelterwatch.realtime import DETECTION, GAP, Notification, format_sse
from shelterwatch.synchronizer import ClientStateSynchronizer, ConnectionStatus

from conftest import wait_until


def test_parse_sse_frames_skips_comments() -> None:
    lines = [
        ": keepalive",
        "",
        "id: abc",
        "event: detection",
        'data: {"a": 1}',
        "",
        "event: gap",
        'data: {"dropped": 2}',
        "",
    ]

    assert parse_sse(lines) == [("detection", '{"a": 1}'), ("gap", '{"dropped": 2}')]


def test_server_frames_round_trip_into_notifications(make_event) -> None:
    event = make_event(context="bus", location_approximate=True)
    wire = format_sse(Notification(kind=DETECTION, event=event)) + format_sse(Notification(kind=GAP, dropped=5))

    frames = parse_sse(wire.splitlines(keepends=True))
    notifications = [notification_from_frame(*frame) for frame in frames]

    assert notifications == [
        Notification(kind=DETECTION, event=event),
        Notification(kind=GAP, dropped=5),
    ]


def test_unknown_frame_types_are_ignored() -> None:
    assert notification_from_frame("message", json.dumps({"hello": "world"})) is None


class FakeContent:
    def __init__(self, lines):
        self.lines = list(lines)

    async def readline(self):
        return self.lines.pop(0) if self.lines else b""


class FakeResponse:
    """Minimal stand-in for an aiohttp response body."""

    def __init__(self, lines=(), payload=None):
        self.content = FakeContent(lines)
        self.payload = payload
        self.closed = False

    def close(self):
        self.closed = True

    def raise_for_status(self):
        pass

    async def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    closed = False

    def __init__(self, response):
        self.response = response

    def get(self, url, **kwargs):
        return self.response


def _frame(event) -> list:
    return [line.encode("utf-8") for line in format_sse(Notification(kind=DETECTION, event=event)).splitlines(keepends=True)]


MALFORMED = [
    b"event: detection\n",
    b"data: {not json\n",
    b"\n",
    b"event: detection\n",
    b"data: \xff\xfe\n",
    b"\n",
    b"event: detection\n",
    b'data: {"id": "evt-x"}\n',
    b"\n",
]


@pytest.mark.asyncio
async def test_remote_stream_skips_malformed_frames(make_event) -> None:
    event = make_event()
    stream = RemoteStream(FakeResponse(MALFORMED + _frame(event)))

    assert await stream.next() == Notification(kind=DETECTION, event=event)
    with pytest.raises(TransientIOError):
        await stream.next()


class OneShotRemoteFeed:
    def __init__(self, lines):
        self.lines = lines
        self.opens = 0

    async def fetch_recent(self, limit):
        return []

    async def open(self):
        self.opens += 1
        if self.opens == 1:
            return RemoteStream(FakeResponse(self.lines))
        return Idle()


class Idle:
    async def next(self):
        await asyncio.Event().wait()

    async def close(self):
        pass


@pytest.mark.asyncio
async def test_malformed_live_frame_does_not_stop_synchronizer(make_event) -> None:
    event = make_event()
    feed = OneShotRemoteFeed(MALFORMED + _frame(event))
    sync = ClientStateSynchronizer(feed, reconnect_delay=0.01)

    task = sync.start()
    await wait_until(lambda: event.id in sync.state and feed.opens == 2)

    assert not task.done()
    assert sync.connection_status is ConnectionStatus.LIVE
    await sync.deactivate()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [ValueError("Expecting value"), [{"id": "evt-x"}], {"detail": "oops"}],
)
async def test_malformed_catch_up_response_is_transient(payload) -> None:
    feed = RemoteFeed("http://backend", session=FakeSession(FakeResponse(payload=payload)))

    with pytest.raises(TransientIOError):
        await feed.fetch_recent(10)
