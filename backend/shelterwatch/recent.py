"""Small time-bounded ring for transient "just arrived" presentation."""

import time
from collections import deque
from typing import Callable, Deque, Generic, List, Tuple, TypeVar

T = TypeVar("T")


class RecentArrivals(Generic[T]):
    """Keeps at most ``capacity`` items, each visible for ``duration_ms``."""

    def __init__(
        self,
        capacity: int = 5,
        duration_ms: int = 3000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capacity = capacity
        self.duration = duration_ms / 1000.0
        self._clock = clock
        self._entries: Deque[Tuple[float, T]] = deque(maxlen=capacity)

    def push(self, item: T) -> None:
        self._entries.append((self._clock() + self.duration, item))

    def active(self) -> List[T]:
        now = self._clock()
        while self._entries and self._entries[0][0] <= now:
            self._entries.popleft()
        return [item for _, item in self._entries]

    def __len__(self) -> int:
        return len(self.active())
