"""Periodic capture loop: detector -> normalizer -> gateway."""

import asyncio
import logging
from contextlib import suppress
from typing import Any, Callable, List, Optional, Set

from .detector import Detector
from .errors import TransientIOError, ValidationError
from .events import Coordinate, DisplayOverlay, EventCandidate, StoredEvent
from .geolocation import LocationProvider, current_location
from .normalizer import normalize
from .recent import RecentArrivals

logger = logging.getLogger(__name__)


class CaptureTicker:
    """Fires a capture every ``interval`` seconds while recording.

    Each candidate is submitted in its own task, so a slow or failing
    submission never delays the next tick.
    """

    def __init__(
        self,
        detector: Detector,
        submit: Callable[[EventCandidate], StoredEvent],
        *,
        fallback: Coordinate,
        locator: Optional[LocationProvider] = None,
        frame_source: Optional[Callable[[], Any]] = None,
        interval: float = 2.0,
        overlay_capacity: int = 5,
        overlay_duration_ms: int = 3000,
    ) -> None:
        self.detector = detector
        self.submit = submit
        self.fallback = fallback
        self.locator = locator
        self.frame_source = frame_source
        self.interval = interval
        self.overlays: RecentArrivals[DisplayOverlay] = RecentArrivals(overlay_capacity, overlay_duration_ms)
        self.submitted = 0
        self.rejected = 0
        self.failed = 0
        self._pending: Set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def recording(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> List[asyncio.Task]:
        frame = self.frame_source() if self.frame_source else None
        candidates = self.detector.detect(frame)
        if not candidates:
            return []
        coordinate = current_location(self.locator)
        if coordinate is None:
            logger.debug("Location unavailable, using fallback %s", self.fallback)
        tasks = []
        for candidate in candidates:
            event, overlay = normalize(candidate, coordinate, fallback=self.fallback)
            self.overlays.push(overlay)
            task = asyncio.create_task(self._submit(event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        return tasks

    async def _submit(self, candidate: EventCandidate) -> Optional[StoredEvent]:
        try:
            stored = await asyncio.to_thread(self.submit, candidate)
        except ValidationError as exc:
            self.rejected += 1
            logger.warning("[Capture] Detection rejected: %s", exc)
        except TransientIOError as exc:
            self.failed += 1
            logger.error("[Capture] Detection dropped: %s", exc)
        except Exception:
            self.failed += 1
            logger.exception("[Capture] Unexpected error while submitting detection")
        else:
            self.submitted += 1
            logger.info(
                "[Capture] %s detected in %s (%.0f%%): %s...",
                stored.object_type.value,
                stored.context.value,
                stored.confidence * 100,
                stored.id[:8],
            )
            return stored
        return None

    async def run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("[Capture] Tick failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if not self.recording:
            logger.info("[Capture] Detection started (every %.1fs)", self.interval)
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("[Capture] Detection stopped")

    async def drain(self) -> None:
        """Wait for in-flight submissions to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
