"""Location providers feeding the capture loop."""

import random
from typing import Optional, Protocol

from .errors import LocationUnavailable
from .events import Coordinate


class LocationProvider(Protocol):
    def locate(self) -> Coordinate:
        """Return the current position or raise LocationUnavailable."""
        ...


class StaticLocation:
    def __init__(self, coordinate: Optional[Coordinate]) -> None:
        self.coordinate = coordinate

    def locate(self) -> Coordinate:
        if self.coordinate is None:
            raise LocationUnavailable("no position fix")
        return self.coordinate


class JitteredLocation:
    """Scatter positions around a centre point to spread demo markers."""

    def __init__(
        self,
        center: Coordinate,
        jitter: float = 0.005,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.center = center
        self.jitter = jitter
        self._rng = rng or random.Random()

    def locate(self) -> Coordinate:
        lat = self.center.lat + self._rng.uniform(-self.jitter, self.jitter)
        lon = self.center.lon + self._rng.uniform(-self.jitter, self.jitter)
        return Coordinate(lat=round(lat, 6), lon=round(lon, 6))


def current_location(provider: Optional[LocationProvider]) -> Optional[Coordinate]:
    """Ask ``provider`` for a fix, returning None when unavailable."""
    if provider is None:
        return None
    try:
        return provider.locate()
    except LocationUnavailable:
        return None
