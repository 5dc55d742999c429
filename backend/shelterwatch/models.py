"""SQLAlchemy models for the detection event log."""

from sqlalchemy import Boolean, Column, DateTime, Float, Index, String
from sqlalchemy.orm import declarative_base

from .events import ObjectType, SceneContext, StoredEvent, as_utc

Base = declarative_base()


class Detection(Base):
    """Append-only row for one committed observation."""

    __tablename__ = "detections"

    id = Column(String, primary_key=True)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    object_type = Column(String, nullable=False)  # tent | blanket | cardboard
    context = Column(String, nullable=False)  # street | park | subway | bus | train | unknown
    confidence = Column(Float, nullable=False)
    observed_at = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
    location_approximate = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_detections_location", "lat", "lon"),
        Index("ix_detections_object_type", "object_type"),
    )

    def to_event(self) -> StoredEvent:
        return StoredEvent(
            id=self.id,
            lat=self.lat,
            lon=self.lon,
            object_type=ObjectType(self.object_type),
            context=SceneContext(self.context),
            confidence=self.confidence,
            observed_at=as_utc(self.observed_at),
            recorded_at=as_utc(self.recorded_at),
            location_approximate=bool(self.location_approximate),
        )


# Catch-up reads scan newest first with a deterministic tie-break on id.
Index("ix_detections_recorded_at", Detection.recorded_at.desc(), Detection.id.desc())
