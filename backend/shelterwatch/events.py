"""Domain types for shelter detection events."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ObjectType(str, Enum):
    TENT = "tent"
    BLANKET = "blanket"
    CARDBOARD = "cardboard"


class SceneContext(str, Enum):
    STREET = "street"
    PARK = "park"
    SUBWAY = "subway"
    BUS = "bus"
    TRAIN = "train"
    UNKNOWN = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float


@dataclass(frozen=True)
class BoundingBox:
    """Pixel box on a 640x480 reference frame."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class DetectionCandidate:
    """Raw guess produced by a Detector for a single frame."""

    object_type: str
    context: str
    confidence: float
    bounding_box: Optional[BoundingBox] = None


@dataclass(frozen=True)
class EventCandidate:
    """A normalized observation that has not been committed yet."""

    lat: float
    lon: float
    object_type: Any
    context: Any
    confidence: Any
    observed_at: datetime = field(default_factory=utcnow)
    location_approximate: bool = False


@dataclass(frozen=True)
class DisplayOverlay:
    """Transient overlay shown for a fresh detection; never persisted."""

    candidate: EventCandidate
    bounding_box: Optional[BoundingBox]


@dataclass(frozen=True)
class StoredEvent:
    """An immutable, committed detection event."""

    id: str
    lat: float
    lon: float
    object_type: ObjectType
    context: SceneContext
    confidence: float
    observed_at: datetime
    recorded_at: datetime
    location_approximate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "lat": self.lat,
            "lon": self.lon,
            "object_type": self.object_type.value,
            "context": self.context.value,
            "confidence": self.confidence,
            "observed_at": self.observed_at.isoformat(),
            "recorded_at": self.recorded_at.isoformat(),
            "location_approximate": self.location_approximate,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StoredEvent":
        return cls(
            id=str(payload["id"]),
            lat=float(payload["lat"]),
            lon=float(payload["lon"]),
            object_type=ObjectType(payload["object_type"]),
            context=SceneContext(payload["context"]),
            confidence=float(payload["confidence"]),
            observed_at=parse_timestamp(payload["observed_at"]),
            recorded_at=parse_timestamp(payload["recorded_at"]),
            location_approximate=bool(payload.get("location_approximate", False)),
        )
