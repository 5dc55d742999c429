"""Validation and commit of incoming detection candidates."""

import logging
import math
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable

from .errors import TransientIOError, ValidationError
from .events import EventCandidate, ObjectType, SceneContext, StoredEvent
from .store import EventStore

logger = logging.getLogger(__name__)


def _coerce_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(field_name, f"must be one of {allowed}", value) from None


def _coerce_number(value, field_name: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(field_name, "must be a number", value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(field_name, "must be a number", value) from None
    if not math.isfinite(number):
        raise ValidationError(field_name, "must be finite", value)
    return number


def _check_range(value, field_name: str, low: float, high: float) -> float:
    number = _coerce_number(value, field_name)
    if not low <= number <= high:
        raise ValidationError(field_name, f"must be within [{low:g}, {high:g}]", value)
    return number


def validate_candidate(candidate: EventCandidate) -> EventCandidate:
    """Return a canonical copy of ``candidate`` or raise ValidationError.

    Fields are checked in a fixed order: object_type, context, confidence,
    lat, lon, observed_at. The first failure wins.
    """
    object_type = _coerce_enum(ObjectType, candidate.object_type, "object_type")
    context = _coerce_enum(SceneContext, candidate.context, "context")
    confidence = _check_range(candidate.confidence, "confidence", 0.0, 1.0)
    lat = _check_range(candidate.lat, "lat", -90.0, 90.0)
    lon = _check_range(candidate.lon, "lon", -180.0, 180.0)
    if not isinstance(candidate.observed_at, datetime):
        raise ValidationError("observed_at", "must be a timestamp", candidate.observed_at)
    return replace(
        candidate,
        object_type=object_type,
        context=context,
        confidence=confidence,
        lat=lat,
        lon=lon,
    )


class IngestionGateway:
    """Single entry point for new observations.

    No authentication and no per-submitter rate limiting are applied.
    """

    def __init__(
        self,
        store: EventStore,
        retry_attempts: int = 3,
        retry_backoff: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = max(0.0, retry_backoff)
        self._sleep = sleep

    def submit(self, candidate: EventCandidate) -> StoredEvent:
        try:
            valid = validate_candidate(candidate)
        except ValidationError as exc:
            logger.info("Rejected detection (%s)", exc)
            raise

        attempt = 1
        delay = self.retry_backoff
        while True:
            try:
                event = self.store.insert(valid)
                break
            except TransientIOError as exc:
                if attempt >= self.retry_attempts:
                    logger.error("Giving up on detection after %d attempts: %s", attempt, exc)
                    raise
                logger.warning(
                    "Store unavailable (attempt %d/%d), retrying in %.2fs: %s",
                    attempt,
                    self.retry_attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)
                attempt += 1
                delay *= 2

        logger.debug(
            "Recorded %s in %s (%.2f) at (%.5f, %.5f)",
            event.object_type.value,
            event.context.value,
            event.confidence,
            event.lat,
            event.lon,
        )
        return event
