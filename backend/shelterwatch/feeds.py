"""Catch-up + live sources for the client state synchronizer."""

import asyncio
import json
import logging
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import aiohttp

from .errors import TransientIOError
from .events import StoredEvent
from .realtime import DETECTION, GAP, Broadcaster, Notification, Subscription
from .store import EventStore

logger = logging.getLogger(__name__)


class FeedStream(Protocol):
    async def next(self) -> Notification:
        ...

    async def close(self) -> None:
        ...


class Feed(Protocol):
    async def fetch_recent(self, limit: int) -> List[StoredEvent]:
        ...

    async def open(self) -> FeedStream:
        ...


class LocalStream:
    def __init__(self, broadcaster: Broadcaster, subscription: Subscription) -> None:
        self._broadcaster = broadcaster
        self.subscription = subscription

    async def next(self) -> Notification:
        if self.subscription.closed:
            raise TransientIOError("subscription closed")
        return await self.subscription.get()

    async def close(self) -> None:
        self._broadcaster.unsubscribe(self.subscription)


class LocalFeed:
    """In-process feed reading straight from the store and broadcaster."""

    def __init__(self, store: EventStore, broadcaster: Broadcaster, queue_size: Optional[int] = None) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.queue_size = queue_size

    async def fetch_recent(self, limit: int) -> List[StoredEvent]:
        return await asyncio.to_thread(self.store.query, limit)

    async def open(self) -> LocalStream:
        return LocalStream(self.broadcaster, self.broadcaster.subscribe(self.queue_size))


class SSEParser:
    """Incremental Server-Sent Events line parser."""

    def __init__(self) -> None:
        self._event = "message"
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[Tuple[str, str]]:
        """Consume one line; return ``(event, data)`` when a frame completes."""
        if not line:
            if not self._data:
                self._event = "message"
                return None
            frame = (self._event, "\n".join(self._data))
            self._event = "message"
            self._data = []
            return frame
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None


def parse_sse(lines: Iterable[str]) -> List[Tuple[str, str]]:
    parser = SSEParser()
    frames = []
    for line in lines:
        frame = parser.feed(line.rstrip("\r\n"))
        if frame is not None:
            frames.append(frame)
    return frames


def notification_from_frame(event: str, data: str) -> Optional[Notification]:
    if event == DETECTION:
        return Notification(kind=DETECTION, event=StoredEvent.from_dict(json.loads(data)))
    if event == GAP:
        payload: Dict[str, int] = json.loads(data)
        return Notification(kind=GAP, dropped=int(payload.get("dropped", 0)))
    return None


class RemoteStream:
    def __init__(self, response: aiohttp.ClientResponse) -> None:
        self._response = response
        self._parser = SSEParser()

    async def next(self) -> Notification:
        while True:
            try:
                raw = await self._response.content.readline()
            except aiohttp.ClientError as exc:
                raise TransientIOError(f"Live feed interrupted: {exc}") from exc
            if not raw:
                raise TransientIOError("Live feed closed by server")
            try:
                frame = self._parser.feed(raw.decode("utf-8").rstrip("\r\n"))
                if frame is None:
                    continue
                notification = notification_from_frame(*frame)
            except (ValueError, KeyError, TypeError) as exc:
                # UnicodeDecodeError and JSONDecodeError are ValueErrors.
                logger.warning("Skipping malformed SSE frame: %s", exc)
                continue
            if notification is not None:
                return notification
            logger.debug("Ignoring SSE frame of type %s", frame[0])

    async def close(self) -> None:
        self._response.close()


class RemoteFeed:
    """Feed backed by a running ShelterWatch HTTP service."""

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def fetch_recent(self, limit: int) -> List[StoredEvent]:
        session = self._get_session()
        try:
            async with session.get(
                f"{self.base_url}/events",
                params={"limit": limit},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                response.raise_for_status()
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientIOError(f"Catch-up query failed: {exc}") from exc
        except ValueError as exc:
            raise TransientIOError(f"Catch-up response is not JSON: {exc}") from exc
        try:
            return [StoredEvent.from_dict(item) for item in payload]
        except (ValueError, KeyError, TypeError) as exc:
            raise TransientIOError(f"Catch-up response is malformed: {exc}") from exc

    async def open(self) -> RemoteStream:
        session = self._get_session()
        try:
            response = await session.get(
                f"{self.base_url}/stream",
                headers={"Accept": "text/event-stream"},
                timeout=aiohttp.ClientTimeout(total=None, connect=self.timeout),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientIOError(f"Could not open live feed: {exc}") from exc
        if response.status >= 400:
            response.close()
            raise TransientIOError(f"Could not open live feed: HTTP {response.status}")
        return RemoteStream(response)

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
