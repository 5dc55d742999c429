import pytest

from shelterwatch.stats import DetectionStats, compute_stats


def test_counts_per_object_type(make_event) -> None:
    kinds = ["tent"] * 4 + ["blanket"] * 3 + ["cardboard"] * 3
    events = [make_event(object_type=kind) for kind in kinds]

    stats = compute_stats(events)

    assert stats.total == 10
    assert stats.type_counts == {"tent": 4, "blanket": 3, "cardboard": 3}
    assert stats.type_shares["tent"] == pytest.approx(40.0)


def test_top_contexts_break_ties_by_first_seen(make_event) -> None:
    contexts = ["bus", "park", "park", "subway", "bus", "train", "street", "street"]
    events = [make_event(context=context) for context in contexts]

    stats = compute_stats(events)

    assert stats.top_contexts == [("bus", 2), ("park", 2), ("street", 2)]


def test_average_confidence_and_recent_activity(make_event) -> None:
    events = [make_event(confidence=value, minutes=minute) for minute, value in enumerate([0.5, 1.0, 0.75, 0.25, 1.0, 0.5])]

    stats = compute_stats(events, recent_limit=5)

    assert stats.average_confidence == pytest.approx(4.0 / 6)
    assert [event.id for event in stats.recent] == [event.id for event in reversed(events)][:5]


def test_empty_set() -> None:
    stats = compute_stats([])

    assert stats == DetectionStats()
    assert stats.to_dict()["average_confidence"] == 0.0


def test_to_dict_shape(make_event) -> None:
    payload = compute_stats([make_event(context="park")]).to_dict()

    assert payload["top_contexts"] == [{"context": "park", "count": 1}]
    assert payload["recent"][0]["context"] == "park"
