"""Real-time fan-out of committed detections via SSE."""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import AsyncGenerator, Dict, Optional, Set

from .events import StoredEvent

logger = logging.getLogger(__name__)

DETECTION = "detection"
GAP = "gap"


@dataclass(frozen=True)
class Notification:
    """One item read from a subscription."""

    kind: str
    event: Optional[StoredEvent] = None
    dropped: int = 0


class Subscription:
    """Bounded per-subscriber buffer with a drop-oldest overflow policy."""

    def __init__(self, maxsize: int, loop: asyncio.AbstractEventLoop) -> None:
        self.maxsize = maxsize
        self.dropped = 0
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._loop = loop
        self._unreported_drops = 0

    def deliver(self, event: StoredEvent) -> None:
        """Hand ``event`` to this subscriber without blocking the caller."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._offer(event)
            return
        try:
            self._loop.call_soon_threadsafe(self._offer, event)
        except RuntimeError:
            # loop already closed; the subscriber is gone
            logger.debug("Discarding event %s for a closed subscriber loop", event.id)

    def _offer(self, event: StoredEvent) -> None:
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            self._unreported_drops += 1
            if self.dropped == 1:
                logger.warning("Subscriber queue full (%d); dropping oldest events", self.maxsize)
        self._queue.put_nowait(event)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Notification:
        """Wait for the next notification.

        Drops are reported as a single ``gap`` notification ahead of the
        events that survived them.
        """
        if self._unreported_drops:
            dropped, self._unreported_drops = self._unreported_drops, 0
            return Notification(kind=GAP, dropped=dropped)
        event = await self._queue.get()
        return Notification(kind=DETECTION, event=event)

    def close(self) -> None:
        self.closed = True


def format_sse(notification: Notification) -> str:
    if notification.kind == GAP:
        payload = json.dumps({"dropped": notification.dropped})
        return f"event: {GAP}\ndata: {payload}\n\n"
    event = notification.event
    payload = json.dumps(event.to_dict())
    return f"id: {event.id}\nevent: {DETECTION}\ndata: {payload}\n\n"


class Broadcaster:
    """One topic carrying every newly committed detection.

    Delivery is at-most-once and only to subscribers connected at publish
    time. Each subscriber drains its own queue, so a slow reader loses its
    oldest buffered events instead of stalling the publisher.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self.published = 0
        self._subscribers: Set[Subscription] = set()
        self._retired_drops = 0
        self._lock = threading.Lock()

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        """Create a new subscription bound to the running event loop."""
        subscription = Subscription(maxsize or self.queue_size, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.add(subscription)
        logger.debug("Subscriber joined (%d connected)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.discard(subscription)
                self._retired_drops += subscription.dropped
        logger.debug("Subscriber left (%d connected)", len(self._subscribers))

    def publish(self, event: StoredEvent) -> None:
        """Broadcast ``event`` to all current subscribers."""
        with self._lock:
            subscribers = list(self._subscribers)
            self.published += 1
        for subscription in subscribers:
            subscription.deliver(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            live_drops = sum(sub.dropped for sub in self._subscribers)
            return {
                "subscribers": len(self._subscribers),
                "published": self.published,
                "dropped": self._retired_drops + live_drops,
            }

    async def stream(
        self,
        subscription: Subscription,
        keepalive: float = 15.0,
    ) -> AsyncGenerator[str, None]:
        """Generate SSE frames from a subscription."""
        while not subscription.closed:
            try:
                notification = await asyncio.wait_for(subscription.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(notification)
