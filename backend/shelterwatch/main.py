"""FastAPI backend for the ShelterWatch detection map."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .db import create_db_engine, create_session_factory, init_db
from .detector import SimulatedDetector
from .errors import TransientIOError, ValidationError
from .events import EventCandidate, ObjectType, SceneContext, parse_timestamp, utcnow
from .gateway import IngestionGateway
from .geolocation import JitteredLocation, current_location
from .normalizer import normalize
from .producer import CaptureTicker
from .realtime import Broadcaster
from .settings import get_settings
from .stats import compute_stats
from .store import EventStore, GeoBounds

logger = logging.getLogger(__name__)
settings = get_settings()

engine = create_db_engine(settings.database_url)
init_db(engine)

store = EventStore(create_session_factory(engine))
broadcaster = Broadcaster(queue_size=settings.subscriber_queue_size)
store.add_listener(broadcaster.publish)
gateway = IngestionGateway(
    store,
    retry_attempts=settings.submit_retry_attempts,
    retry_backoff=settings.submit_retry_backoff_seconds,
)

detector = SimulatedDetector(probability=settings.detection_probability)
locator = JitteredLocation(settings.default_location, jitter=settings.location_jitter)
ticker = CaptureTicker(
    detector,
    gateway.submit,
    fallback=settings.default_location,
    locator=locator,
    interval=settings.capture_interval_seconds,
    overlay_capacity=settings.overlay_capacity,
    overlay_duration_ms=settings.overlay_duration_ms,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    if settings.auto_capture_enabled:
        ticker.start()
    try:
        yield
    finally:
        await ticker.stop()
        await ticker.drain()


app = FastAPI(
    title="ShelterWatch",
    description="Anonymous outdoor-shelter detections with a live map feed",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


class DetectionEventInput(BaseModel):
    """Candidate observation as submitted by a client."""

    object_type: str
    context: str
    confidence: float
    lat: float
    lon: float
    observed_at: Optional[str] = None  # ISO8601, defaults to receipt time
    location_approximate: bool = False


class EventResponse(BaseModel):
    id: str
    lat: float
    lon: float
    object_type: ObjectType
    context: SceneContext
    confidence: float
    observed_at: datetime
    recorded_at: datetime
    location_approximate: bool


class ContextCount(BaseModel):
    context: str
    count: int


class StatsResponse(BaseModel):
    total: int
    type_counts: dict
    type_shares: dict
    top_contexts: List[ContextCount]
    average_confidence: float
    recent: List[EventResponse]


class DemoResponse(BaseModel):
    message: str
    events_created: int


def get_gateway() -> IngestionGateway:
    return gateway


def get_store() -> EventStore:
    return store


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc), "field": exc.field})


@app.exception_handler(TransientIOError)
async def transient_error_handler(request: Request, exc: TransientIOError) -> JSONResponse:
    logger.error("Request to %s failed: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Detection store temporarily unavailable"})


@app.post("/events", response_model=EventResponse, status_code=201)
async def create_event(
    event_input: DetectionEventInput,
    gateway: IngestionGateway = Depends(get_gateway),
):
    """
    Validate and record a detection. Live subscribers receive it via /stream.
    """
    observed_at = utcnow()
    if event_input.observed_at:
        try:
            observed_at = parse_timestamp(event_input.observed_at)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid timestamp format")

    candidate = EventCandidate(
        lat=event_input.lat,
        lon=event_input.lon,
        object_type=event_input.object_type,
        context=event_input.context,
        confidence=event_input.confidence,
        observed_at=observed_at,
        location_approximate=event_input.location_approximate,
    )
    event = await run_in_threadpool(gateway.submit, candidate)
    return event.to_dict()


@app.post("/demo", response_model=DemoResponse)
async def generate_demo_events(
    count: int = Query(default=5, ge=1, le=20),
    gateway: IngestionGateway = Depends(get_gateway),
):
    """
    Generate simulated detections through the full ingestion pipeline.
    """
    events_created = 0
    for _ in range(count):
        candidate, _overlay = normalize(
            detector.random_candidate(),
            current_location(locator),
            fallback=settings.default_location,
        )
        await run_in_threadpool(gateway.submit, candidate)
        events_created += 1

    return DemoResponse(
        message=f"Successfully generated {events_created} demo events",
        events_created=events_created,
    )


@app.get("/events", response_model=List[EventResponse])
async def list_events(
    limit: int = Query(default=settings.catch_up_limit, ge=1, le=settings.max_query_limit),
    object_type: Optional[ObjectType] = None,
    context: Optional[SceneContext] = None,
    since: Optional[datetime] = None,
    min_lat: Optional[float] = Query(default=None, ge=-90, le=90),
    max_lat: Optional[float] = Query(default=None, ge=-90, le=90),
    min_lon: Optional[float] = Query(default=None, ge=-180, le=180),
    max_lon: Optional[float] = Query(default=None, ge=-180, le=180),
    exact_only: bool = False,
    store: EventStore = Depends(get_store),
):
    """
    Newest detections first; this is the catch-up query for live consumers.
    """
    box = (min_lat, min_lon, max_lat, max_lon)
    bounds = None
    if any(value is not None for value in box):
        if any(value is None for value in box):
            raise HTTPException(status_code=400, detail="Bounding box needs min/max lat and lon")
        bounds = GeoBounds(*box)

    events = await run_in_threadpool(
        store.query,
        limit,
        object_type=object_type,
        context=context,
        since=since,
        bounds=bounds,
        exact_location_only=exact_only,
    )
    return [event.to_dict() for event in events]


@app.get("/stats", response_model=StatsResponse)
async def detection_stats(
    limit: int = Query(default=settings.catch_up_limit, ge=1, le=settings.max_query_limit),
    store: EventStore = Depends(get_store),
):
    events = await run_in_threadpool(store.query, limit)
    return compute_stats(reversed(events)).to_dict()


@app.get("/stream")
async def stream_events():
    """
    SSE endpoint for real-time detection updates.
    """
    subscription = broadcaster.subscribe()

    async def event_generator():
        try:
            async for message in broadcaster.stream(subscription, keepalive=settings.stream_keepalive_seconds):
                yield message
        finally:
            broadcaster.unsubscribe(subscription)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "auto_capture": settings.auto_capture_enabled,
        "recording": ticker.recording,
        "stream": broadcaster.stats(),
    }
