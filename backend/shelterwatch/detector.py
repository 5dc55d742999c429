"""Detector capability and the simulated stand-in used for demos."""

import random
from typing import Any, List, Optional, Protocol

from .events import BoundingBox, DetectionCandidate, ObjectType, SceneContext

FRAME_WIDTH = 640
FRAME_HEIGHT = 480

# The simulated detector never guesses "unknown".
SIMULATED_CONTEXTS = [
    SceneContext.STREET,
    SceneContext.PARK,
    SceneContext.SUBWAY,
    SceneContext.BUS,
    SceneContext.TRAIN,
]


class Detector(Protocol):
    def detect(self, frame: Any) -> List[DetectionCandidate]:
        """Return zero or more candidates found in ``frame``."""
        ...


class SimulatedDetector:
    """Random detector; yields one guess per frame with a fixed probability.

    This is not real recognition. Replace it with a vision service that
    implements ``detect`` to get meaningful data.
    """

    def __init__(self, probability: float = 0.3, rng: Optional[random.Random] = None) -> None:
        self.probability = probability
        self._rng = rng or random.Random()

    def detect(self, frame: Any = None) -> List[DetectionCandidate]:
        if self._rng.random() >= self.probability:
            return []
        return [self.random_candidate()]

    def random_candidate(self) -> DetectionCandidate:
        rng = self._rng
        return DetectionCandidate(
            object_type=rng.choice(list(ObjectType)).value,
            context=rng.choice(SIMULATED_CONTEXTS).value,
            confidence=round(0.75 + rng.random() * 0.2, 4),
            bounding_box=BoundingBox(
                x=rng.random() * 200 + 50,
                y=rng.random() * 150 + 50,
                width=rng.random() * 100 + 50,
                height=rng.random() * 80 + 40,
            ),
        )
