"""Per-consumer view of the detection log: catch-up plus live merge."""

import asyncio
import logging
import time
from contextlib import suppress
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .errors import TransientIOError
from .events import StoredEvent
from .feeds import Feed, FeedStream
from .realtime import GAP
from .recent import RecentArrivals
from .stats import DetectionStats, compute_stats

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    CATCHING_UP = "catching_up"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


def _newest_first(event: StoredEvent):
    return (event.recorded_at, event.id)


class ViewState:
    """Consumer state with named transitions.

    ``known_events`` is keyed by id, so merging the same event twice is a
    no-op. The set is bounded; the oldest by ``recorded_at`` go first.
    """

    def __init__(self, max_events: int = 500) -> None:
        self.max_events = max_events
        self.recording = False
        self.connection_status = ConnectionStatus.IDLE
        self._known: Dict[str, StoredEvent] = {}

    def toggle_recording(self) -> bool:
        self.recording = not self.recording
        return self.recording

    def event_received(self, event: StoredEvent) -> bool:
        """Merge one event; return True if it was not known before."""
        if event.id in self._known:
            return False
        self._known[event.id] = event
        self._evict()
        return event.id in self._known

    def catch_up_completed(self, events: Iterable[StoredEvent]) -> int:
        added = 0
        for event in events:
            if event.id not in self._known:
                self._known[event.id] = event
                added += 1
        self._evict()
        return added

    def connection_changed(self, status: ConnectionStatus) -> bool:
        if status == self.connection_status:
            return False
        logger.debug("Connection %s -> %s", self.connection_status.value, status.value)
        self.connection_status = status
        return True

    def events(self) -> List[StoredEvent]:
        return sorted(self._known.values(), key=_newest_first, reverse=True)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._known

    def __len__(self) -> int:
        return len(self._known)

    def _evict(self) -> None:
        overflow = len(self._known) - self.max_events
        if overflow <= 0:
            return
        for event in sorted(self._known.values(), key=_newest_first)[:overflow]:
            del self._known[event.id]


class ClientStateSynchronizer:
    """Keeps a local view in step with the store.

    Activation opens the live stream first and then runs one catch-up query,
    so an event committed in between is seen at least once; the id-keyed
    merge absorbs the duplicate. Gaps in the live stream and disconnects
    both lead to a fresh catch-up rather than assuming continuity.
    """

    def __init__(
        self,
        feed: Feed,
        catch_up_limit: int = 50,
        max_events: int = 500,
        recent_capacity: int = 5,
        recent_duration_ms: int = 3000,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
        on_change: Optional[Callable[["ClientStateSynchronizer"], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.feed = feed
        self.catch_up_limit = catch_up_limit
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.on_change = on_change
        self.state = ViewState(max_events)
        self.recent: RecentArrivals[StoredEvent] = RecentArrivals(recent_capacity, recent_duration_ms, clock)
        self.stats: DetectionStats = compute_stats([])
        self._stream: Optional[FeedStream] = None
        self._task: Optional[asyncio.Task] = None
        self._active = False

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.state.connection_status

    def events(self) -> List[StoredEvent]:
        return self.state.events()

    def toggle_recording(self) -> bool:
        recording = self.state.toggle_recording()
        self._changed()
        return recording

    def merge(self, event: StoredEvent) -> bool:
        """Merge one live event into the view."""
        if not self.state.event_received(event):
            return False
        self.recent.push(event)
        self._changed()
        return True

    async def activate(self) -> None:
        self._active = True
        await self._connect()

    def start(self) -> asyncio.Task:
        """Activate and drain the live feed in a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def run(self) -> None:
        if not self._active:
            self._active = True
            try:
                await self._connect()
            except TransientIOError as exc:
                logger.warning("Initial sync failed: %s", exc)
                await self._reconnect()
        while self._active:
            try:
                notification = await self._stream.next()
            except TransientIOError as exc:
                logger.warning("Live feed lost: %s", exc)
                await self._reconnect()
                continue
            if notification.kind == GAP:
                logger.warning("Live feed skipped %d events; catching up", notification.dropped)
                try:
                    await self._catch_up()
                except TransientIOError as exc:
                    logger.warning("Catch-up after gap failed: %s", exc)
                    await self._reconnect()
                continue
            self.merge(notification.event)

    async def deactivate(self) -> None:
        self._active = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self._close_stream()
        self._set_status(ConnectionStatus.CLOSED)

    async def _connect(self) -> None:
        self._set_status(ConnectionStatus.CATCHING_UP)
        self._stream = await self.feed.open()
        await self._catch_up()

    async def _catch_up(self) -> None:
        self._set_status(ConnectionStatus.CATCHING_UP)
        events = await self.feed.fetch_recent(self.catch_up_limit)
        added = self.state.catch_up_completed(events)
        logger.info("Catch-up merged %d of %d events", added, len(events))
        self._set_status(ConnectionStatus.LIVE)
        self._changed()

    async def _reconnect(self) -> None:
        await self._close_stream()
        self._set_status(ConnectionStatus.RECONNECTING)
        delay = self.reconnect_delay
        while self._active:
            await asyncio.sleep(delay)
            try:
                await self._connect()
                return
            except TransientIOError as exc:
                logger.warning("Reconnect failed, next attempt in %.1fs: %s", delay, exc)
                await self._close_stream()
                self._set_status(ConnectionStatus.RECONNECTING)
                delay = min(delay * 2, self.max_reconnect_delay)

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.close()

    def _set_status(self, status: ConnectionStatus) -> None:
        if self.state.connection_changed(status):
            self._changed()

    def _changed(self) -> None:
        # Oldest first, so context ties go to the label seen first.
        self.stats = compute_stats(reversed(self.state.events()))
        if self.on_change is not None:
            try:
                self.on_change(self)
            except Exception:
                logger.exception("State change callback failed")
