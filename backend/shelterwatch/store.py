"""Append-only event store backed by SQLAlchemy."""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .errors import TransientIOError
from .events import EventCandidate, ObjectType, SceneContext, StoredEvent, as_utc, utcnow
from .models import Detection

logger = logging.getLogger(__name__)

Listener = Callable[[StoredEvent], None]

# Connection-level failures; constraint and SQL errors propagate unchanged.
TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError)


@dataclass(frozen=True)
class GeoBounds:
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float


class EventStore:
    """Durable, append-only collection of committed detection events.

    ``insert`` is the only mutation. Every successful insert is announced to
    the registered listeners exactly once, after the transaction commits.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._commit_lock = threading.Lock()
        self._last_recorded_at: Optional[datetime] = None
        self._seeded = False
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def insert(self, candidate: EventCandidate) -> StoredEvent:
        # Listeners observe commit order; recorded_at never goes backwards.
        with self._commit_lock:
            recorded_at = self._next_recorded_at()
            event = StoredEvent(
                id=str(uuid.uuid4()),
                lat=float(candidate.lat),
                lon=float(candidate.lon),
                object_type=ObjectType(candidate.object_type),
                context=SceneContext(candidate.context),
                confidence=float(candidate.confidence),
                observed_at=as_utc(candidate.observed_at),
                recorded_at=recorded_at,
                location_approximate=candidate.location_approximate,
            )
            row = Detection(
                id=event.id,
                lat=event.lat,
                lon=event.lon,
                object_type=event.object_type.value,
                context=event.context.value,
                confidence=event.confidence,
                observed_at=event.observed_at,
                recorded_at=event.recorded_at,
                location_approximate=event.location_approximate,
            )
            with self._session_factory() as session:
                try:
                    session.add(row)
                    session.commit()
                except TRANSIENT_DB_ERRORS as exc:
                    session.rollback()
                    raise TransientIOError(f"Failed to commit detection: {exc}") from exc
            self._last_recorded_at = recorded_at
            self._notify(event)
        return event

    def query(
        self,
        limit: int = 50,
        *,
        object_type: Optional[ObjectType] = None,
        context: Optional[SceneContext] = None,
        since: Optional[datetime] = None,
        bounds: Optional[GeoBounds] = None,
        exact_location_only: bool = False,
    ) -> List[StoredEvent]:
        """Return a snapshot of the newest events, ``recorded_at`` descending."""
        if limit <= 0:
            return []
        with self._session_factory() as session:
            try:
                stmt = session.query(Detection)
                if object_type is not None:
                    stmt = stmt.filter(Detection.object_type == ObjectType(object_type).value)
                if context is not None:
                    stmt = stmt.filter(Detection.context == SceneContext(context).value)
                if since is not None:
                    stmt = stmt.filter(Detection.recorded_at >= as_utc(since))
                if bounds is not None:
                    stmt = stmt.filter(
                        Detection.lat >= bounds.min_lat,
                        Detection.lat <= bounds.max_lat,
                        Detection.lon >= bounds.min_lon,
                        Detection.lon <= bounds.max_lon,
                    )
                if exact_location_only:
                    stmt = stmt.filter(Detection.location_approximate.is_(False))
                rows = (
                    stmt.order_by(Detection.recorded_at.desc(), Detection.id.desc())
                    .limit(limit)
                    .all()
                )
            except TRANSIENT_DB_ERRORS as exc:
                raise TransientIOError(f"Failed to query detections: {exc}") from exc
            return [row.to_event() for row in rows]

    def get(self, event_id: str) -> Optional[StoredEvent]:
        with self._session_factory() as session:
            try:
                row = session.get(Detection, event_id)
            except TRANSIENT_DB_ERRORS as exc:
                raise TransientIOError(f"Failed to load detection {event_id}: {exc}") from exc
            return row.to_event() if row is not None else None

    def count(self) -> int:
        with self._session_factory() as session:
            try:
                return session.query(func.count(Detection.id)).scalar() or 0
            except TRANSIENT_DB_ERRORS as exc:
                raise TransientIOError(f"Failed to count detections: {exc}") from exc

    def _next_recorded_at(self) -> datetime:
        if not self._seeded:
            with self._session_factory() as session:
                try:
                    self._last_recorded_at = self._latest_recorded_at(session)
                except TRANSIENT_DB_ERRORS as exc:
                    raise TransientIOError(f"Failed to read latest detection: {exc}") from exc
            self._seeded = True
        now = as_utc(self._clock())
        if self._last_recorded_at is not None and now <= self._last_recorded_at:
            now = self._last_recorded_at + timedelta(microseconds=1)
        return now

    @staticmethod
    def _latest_recorded_at(session: Session) -> Optional[datetime]:
        latest = session.query(func.max(Detection.recorded_at)).scalar()
        return as_utc(latest) if latest is not None else None

    def _notify(self, event: StoredEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Detection listener failed for %s", event.id)
