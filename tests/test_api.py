import importlib
import sys

import pytest
from fastapi.testclient import TestClient


def _reload_main():
    module_name = "shelterwatch.main"
    if module_name in sys.modules:
        return importlib.reload(sys.modules[module_name])
    return importlib.import_module(module_name)


@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setenv("SHELTERWATCH_DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("SHELTERWATCH_AUTO_CAPTURE_ENABLED", "0")
    monkeypatch.setenv("SHELTERWATCH_SUBMIT_RETRY_ATTEMPTS", "1")
    main = _reload_main()
    with TestClient(main.app) as client:
        client.main = main
        yield client
    main.engine.dispose()


def _payload(**overrides):
    payload = {
        "object_type": "tent",
        "context": "park",
        "confidence": 0.91,
        "lat": 40.7,
        "lon": -74.0,
        "observed_at": "2025-09-14T07:00:00Z",
    }
    payload.update(overrides)
    return payload


def test_submit_and_catch_up(client) -> None:
    created = [client.post("/events", json=_payload(context=ctx)) for ctx in ("park", "street", "bus")]
    assert all(response.status_code == 201 for response in created)
    body = created[0].json()
    assert body["object_type"] == "tent"
    assert body["observed_at"].startswith("2025-09-14T07:00:00")
    assert body["location_approximate"] is False

    response = client.get("/events", params={"limit": 3})
    assert response.status_code == 200
    assert [item["id"] for item in response.json()] == [r.json()["id"] for r in reversed(created)]


def test_invalid_confidence_names_field(client) -> None:
    response = client.post("/events", json=_payload(confidence=1.5))

    assert response.status_code == 422
    assert response.json()["field"] == "confidence"
    assert client.get("/events").json() == []


def test_invalid_object_type_is_rejected(client) -> None:
    response = client.post("/events", json=_payload(object_type="bed"))

    assert response.status_code == 422
    assert response.json()["field"] == "object_type"
    assert client.main.store.count() == 0


def test_bad_timestamp(client) -> None:
    response = client.post("/events", json=_payload(observed_at="not-a-time"))
    assert response.status_code == 400


def test_event_filters(client) -> None:
    client.post("/events", json=_payload(object_type="blanket", lat=40.8, lon=-73.9))
    client.post("/events", json=_payload(location_approximate=True))

    blankets = client.get("/events", params={"object_type": "blanket"}).json()
    assert [item["object_type"] for item in blankets] == ["blanket"]

    exact = client.get("/events", params={"exact_only": "true"}).json()
    assert len(exact) == 1

    boxed = client.get(
        "/events",
        params={"min_lat": 40.75, "max_lat": 40.85, "min_lon": -74.0, "max_lon": -73.8},
    ).json()
    assert [item["object_type"] for item in boxed] == ["blanket"]

    assert client.get("/events", params={"min_lat": 40.0}).status_code == 400
    assert client.get("/events", params={"object_type": "bed"}).status_code == 422


def test_stats_endpoint(client) -> None:
    for kind in ["tent"] * 4 + ["blanket"] * 3 + ["cardboard"] * 3:
        client.post("/events", json=_payload(object_type=kind))

    stats = client.get("/stats").json()

    assert stats["total"] == 10
    assert stats["type_counts"] == {"tent": 4, "blanket": 3, "cardboard": 3}
    assert stats["top_contexts"] == [{"context": "park", "count": 10}]
    assert stats["average_confidence"] == pytest.approx(0.91)
    assert len(stats["recent"]) == 5


def test_stats_context_ties_favor_oldest_label(client) -> None:
    for ctx in ("street", "bus", "train"):
        assert client.post("/events", json=_payload(context=ctx)).status_code == 201

    stats = client.get("/stats").json()

    assert [item["context"] for item in stats["top_contexts"]] == ["street", "bus", "train"]


def test_demo_and_health(client) -> None:
    response = client.post("/demo", params={"count": 4})
    assert response.status_code == 200
    assert response.json()["events_created"] == 4
    assert len(client.get("/events").json()) == 4

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["recording"] is False
    assert health["stream"]["published"] == 4


def test_store_outage_returns_503(client) -> None:
    from shelterwatch.models import Base

    Base.metadata.drop_all(bind=client.main.engine)

    response = client.post("/events", json=_payload())
    assert response.status_code == 503
    assert client.get("/events").status_code == 503
    assert client.get("/stats").status_code == 503
