import asyncio
from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from shelterwatch.db import create_db_engine, create_session_factory, init_db
from shelterwatch.events import EventCandidate, ObjectType, SceneContext, StoredEvent
from shelterwatch.store import EventStore

BASE_TIME = datetime(2025, 9, 14, 7, 0, tzinfo=timezone.utc)


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'detections.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return EventStore(session_factory, clock=StepClock())


@pytest.fixture
def make_candidate():
    def _make(**overrides) -> EventCandidate:
        values = {
            "lat": 40.7,
            "lon": -74.0,
            "object_type": "tent",
            "context": "park",
            "confidence": 0.9,
            "observed_at": BASE_TIME,
        }
        values.update(overrides)
        return EventCandidate(**values)

    return _make


@pytest.fixture
def make_event():
    ids = count(1)

    def _make(object_type="tent", context="street", confidence=0.8, minutes=0, **overrides) -> StoredEvent:
        number = next(ids)
        values = {
            "id": f"evt-{number:03d}",
            "lat": 40.71,
            "lon": -74.0,
            "object_type": ObjectType(object_type),
            "context": SceneContext(context),
            "confidence": confidence,
            "observed_at": BASE_TIME + timedelta(minutes=minutes),
            "recorded_at": BASE_TIME + timedelta(minutes=minutes, seconds=1),
        }
        values.update(overrides)
        return StoredEvent(**values)

    return _make


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
