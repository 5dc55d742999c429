"""Summary statistics over a set of known detections."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from .events import ObjectType, StoredEvent

TOP_CONTEXTS = 3
RECENT_ACTIVITY = 5


@dataclass(frozen=True)
class DetectionStats:
    total: int = 0
    type_counts: Dict[str, int] = field(default_factory=dict)
    type_shares: Dict[str, float] = field(default_factory=dict)
    top_contexts: List[Tuple[str, int]] = field(default_factory=list)
    average_confidence: float = 0.0
    recent: List[StoredEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "type_counts": dict(self.type_counts),
            "type_shares": dict(self.type_shares),
            "top_contexts": [{"context": name, "count": count} for name, count in self.top_contexts],
            "average_confidence": self.average_confidence,
            "recent": [event.to_dict() for event in self.recent],
        }


def compute_stats(
    events: Iterable[StoredEvent],
    top_k: int = TOP_CONTEXTS,
    recent_limit: int = RECENT_ACTIVITY,
) -> DetectionStats:
    """Derive counts, top contexts, mean confidence and recent activity.

    Pass ``events`` oldest first. Context ties keep the order in which each
    label was first seen, so the ranking is deterministic for a given input
    order.
    """
    events = list(events)
    total = len(events)
    if not total:
        return DetectionStats()

    by_type = Counter(event.object_type for event in events)
    type_counts = {kind.value: by_type[kind] for kind in ObjectType if by_type[kind]}
    type_shares = {name: count / total * 100 for name, count in type_counts.items()}

    # Counter preserves insertion order and most_common() is a stable sort.
    by_context: Counter = Counter(event.context.value for event in events)
    top_contexts = by_context.most_common(top_k)

    average_confidence = sum(event.confidence for event in events) / total
    recent = sorted(events, key=lambda event: event.observed_at, reverse=True)[:recent_limit]

    return DetectionStats(
        total=total,
        type_counts=type_counts,
        type_shares=type_shares,
        top_contexts=top_contexts,
        average_confidence=average_confidence,
        recent=recent,
    )
