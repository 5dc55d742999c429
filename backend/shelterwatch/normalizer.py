"""Turn raw detector guesses into storable event candidates."""

from datetime import datetime
from typing import Optional, Tuple

from .events import Coordinate, DetectionCandidate, DisplayOverlay, EventCandidate, utcnow


def normalize(
    candidate: DetectionCandidate,
    coordinate: Optional[Coordinate],
    *,
    fallback: Coordinate,
    now: Optional[datetime] = None,
) -> Tuple[EventCandidate, DisplayOverlay]:
    """Build an event candidate plus its transient display overlay.

    A missing coordinate falls back to ``fallback`` and the candidate is
    marked as having an approximate location. Values are passed through
    unchecked; the gateway rejects anything malformed.
    """
    approximate = coordinate is None
    position = fallback if approximate else coordinate
    event = EventCandidate(
        lat=position.lat,
        lon=position.lon,
        object_type=candidate.object_type,
        context=candidate.context,
        confidence=candidate.confidence,
        observed_at=now or utcnow(),
        location_approximate=approximate,
    )
    return event, DisplayOverlay(candidate=event, bounding_box=candidate.bounding_box)
