from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from datastore.reading_store import ReadingStore, build_default_store
from models.records import Sensor, ThresholdBand
from registry.sensor_registry import SensorRegistry, build_default_registry
from services.analytics import AnalyticsService
from services.ingestion import IngestionService, build_default_ingestion
from settings import get_settings

NOW = datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def api_client(tmp_path, monkeypatch) -> Iterator[TestClient]:
    store = ReadingStore(name="test", persistence_path=tmp_path / "readings.jsonl")
    registry = SensorRegistry(persistence_path=tmp_path / "sensors.json")
    registry.register(
        Sensor(
            sensor_id="env-01",
            name="Rooftop",
            region="north",
            thresholds={"temperature": ThresholdBand(warning_max=35)},
            next_maintenance=NOW + timedelta(days=60),
        )
    )
    registry.register(Sensor(sensor_id="env-02", name="Basement", region="south"))

    services = {}

    def build_test_ingestion(workers: int | None = None) -> IngestionService:
        ingestion = services.get("ingestion")
        if ingestion is None:
            ingestion = services["ingestion"] = IngestionService(
                store=store, registry=registry, workers=workers or 1
            )
        return ingestion

    def build_test_analytics() -> AnalyticsService:
        return AnalyticsService(store=store, registry=registry, default_timeout=5.0)

    def cache_clear() -> None:
        ingestion = services.pop("ingestion", None)
        if ingestion is not None:
            ingestion.shutdown()

    build_test_ingestion.cache_clear = cache_clear  # type: ignore[attr-defined]
    build_test_analytics.cache_clear = lambda: None  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_ingestion", build_test_ingestion)
    monkeypatch.setattr("app.main.build_default_analytics", build_test_analytics)
    monkeypatch.setattr("app.api.build_default_ingestion", build_test_ingestion)
    monkeypatch.setattr("app.api.build_default_analytics", build_test_analytics)

    app = create_app()
    with TestClient(app) as client:
        yield client

    cache_clear()


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def test_lifespan_shuts_down_ingestion_and_clears_cache(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("READING_STORE_PATH", str(tmp_path / "readings.jsonl"))
    monkeypatch.setenv("SENSOR_REGISTRY_PATH", str(tmp_path / "sensors.json"))
    for cache in (get_settings, build_default_store, build_default_registry, build_default_ingestion):
        cache.cache_clear()

    app = create_app()

    with TestClient(app):
        ingestion_during = build_default_ingestion()
        assert ingestion_during.executor._shutdown is False

    assert ingestion_during.executor._shutdown is True
    ingestion_after = build_default_ingestion()
    try:
        assert ingestion_after is not ingestion_during
        assert ingestion_after.executor._shutdown is False
    finally:
        ingestion_after.shutdown()
        for cache in (build_default_ingestion, build_default_store, build_default_registry, get_settings):
            cache.cache_clear()


def test_ingest_returns_derived_facts(api_client: TestClient) -> None:
    response = api_client.post(
        "/sensors/env-01/readings",
        json={"measurements": {"temperature": 40, "humidity": 50}},
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["sensor_id"] == "ENV-01"
    assert payload["quality_score"] == 100
    assert payload["quality_category"] == "excellent"
    assert payload["alerts"] == [
        {
            "type": "temperature_high",
            "measured_value": 40.0,
            "threshold_value": 35.0,
            "level": "warning",
        }
    ]


def test_ingest_unknown_sensor_returns_not_found(api_client: TestClient) -> None:
    response = api_client.post("/sensors/ghost/readings", json={"measurements": {"temperature": 1}})

    assert response.status_code == 404
    assert "GHOST" in response.json()["detail"]


def test_ingest_non_numeric_value_returns_bad_request(api_client: TestClient) -> None:
    response = api_client.post(
        "/sensors/env-01/readings", json={"measurements": {"temperature": "warm"}}
    )

    assert response.status_code == 400
    assert "temperature" in response.json()["detail"]


def test_ingest_future_timestamp_returns_bad_request(api_client: TestClient) -> None:
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    response = api_client.post(
        "/sensors/env-01/readings",
        json={"measurements": {"temperature": 20}, "timestamp": _iso(future)},
    )

    assert response.status_code == 400


def test_batch_reports_per_item_outcome(api_client: TestClient) -> None:
    response = api_client.post(
        "/readings/batch",
        json={
            "readings": [
                {"sensor_id": "env-01", "measurements": {"temperature": 20, "humidity": 40}},
                {"sensor_id": "ghost", "measurements": {"temperature": 20}},
            ]
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["accepted"] == 1
    assert payload["rejected"] == 1
    assert payload["items"][1]["error_type"] == "SensorNotFound"
    assert payload["items"][0]["result"]["quality_category"] == "excellent"


def test_series_latest_and_alert_queries(api_client: TestClient) -> None:
    hour_start = NOW.replace(minute=0, second=0) - timedelta(hours=2)
    for minutes, temperature in ((10, 40), (40, 30), (70, 36)):
        response = api_client.post(
            "/sensors/env-01/readings",
            json={
                "measurements": {"temperature": temperature, "humidity": 50},
                "timestamp": _iso(hour_start + timedelta(minutes=minutes)),
            },
        )
        assert response.status_code == 201

    window = {"start": _iso(hour_start), "end": _iso(hour_start + timedelta(hours=2))}

    series = api_client.get("/sensors/env-01/series", params={"granularity": "hour", **window})
    assert series.status_code == 200
    body = series.json()
    assert body["total_count"] == 3
    assert [bucket["count"] for bucket in body["buckets"]] == [2, 1]
    assert body["buckets"][0]["parameters"]["temperature"]["avg"] == 35.0

    latest = api_client.get("/readings/latest", params={"sensor_id": "env-01"})
    assert latest.json()["count"] == 1
    assert latest.json()["readings"][0]["measurements"]["temperature"] == 36.0

    trend = api_client.get("/alerts/trend", params={"granularity": "hour", **window})
    assert trend.json()["total"] == 2
    assert [bucket["medium"] for bucket in trend.json()["buckets"]] == [1, 1]

    alerts = api_client.get("/alerts", params={"limit": 1, **window})
    alert_body = alerts.json()
    assert alert_body["total"] == 2
    assert len(alert_body["alerts"]) == 1
    assert alert_body["alerts"][0]["alert"]["measured_value"] == 36.0
    assert alert_body["summary"]["by_type"] == {"temperature_high": 2}

    summary = api_client.get("/alerts/summary", params=window)
    assert summary.json()["medium"] == 2

    rollup = api_client.get("/alerts/rollup", params={"dimension": "region", **window})
    assert [(entry["key"], entry["count"]) for entry in rollup.json()["entries"]] == [("north", 2)]


def test_invalid_granularity_returns_bad_request(api_client: TestClient) -> None:
    response = api_client.get("/sensors/env-01/series", params={"granularity": "minute"})

    assert response.status_code == 400
    assert "granularity" in response.json()["detail"]


def test_inverted_window_returns_bad_request(api_client: TestClient) -> None:
    response = api_client.get(
        "/alerts/rollup",
        params={"start": _iso(NOW), "end": _iso(NOW - timedelta(hours=1))},
    )

    assert response.status_code == 400


def test_sensor_health_reflects_heartbeat(api_client: TestClient) -> None:
    before = api_client.get("/sensors/env-01/health").json()
    assert before["online"] is False
    assert before["maintenance_status"] == "scheduled"

    api_client.post("/sensors/env-01/readings", json={"measurements": {"temperature": 20}})
    after = api_client.get("/sensors/env-01/health").json()
    assert after["online"] is True
    assert after["seconds_since_heartbeat"] >= 0

    assert api_client.get("/sensors/ghost/health").status_code == 404


def test_healthcheck(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}


def test_ingest_out_of_range_metadata_returns_bad_request(api_client: TestClient) -> None:
    response = api_client.post(
        "/sensors/env-01/readings",
        json={"measurements": {"temperature": 20}, "device_metadata": {"battery_level": 150}},
    )

    assert response.status_code == 400
    assert "device metadata" in response.json()["detail"]


def test_batch_rejects_only_the_item_with_bad_metadata(api_client: TestClient) -> None:
    response = api_client.post(
        "/readings/batch",
        json={
            "readings": [
                {"sensor_id": "env-01", "measurements": {"temperature": 20}},
                {
                    "sensor_id": "env-02",
                    "measurements": {"temperature": 20},
                    "device_metadata": {"battery_level": 150},
                },
            ]
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["accepted"] == 1
    assert payload["rejected"] == 1
    assert payload["items"][1]["error_type"] == "ValidationError"


def test_register_sensor_then_conflict(api_client: TestClient) -> None:
    body = {
        "sensor_id": "env-03",
        "name": "Greenhouse",
        "region": "east",
        "thresholds": {"humidity": {"warning_max": 80}},
    }
    created = api_client.post("/sensors", json=body)

    assert created.status_code == 201
    payload = created.json()
    assert payload["sensor"]["sensor_id"] == "ENV-03"
    assert payload["online"] is False
    assert payload["latest_reading"] is None

    reading = api_client.post(
        "/sensors/env-03/readings", json={"measurements": {"humidity": 90}}
    )
    assert reading.json()["alerts"][0]["type"] == "humidity_high"

    duplicate = api_client.post("/sensors", json=body)
    assert duplicate.status_code == 409
    assert "ENV-03" in duplicate.json()["detail"]

    assert api_client.post("/sensors", json={"sensor_id": "env-04"}).status_code == 422


def test_list_sensors_with_filters(api_client: TestClient) -> None:
    api_client.post("/sensors/env-01/readings", json={"measurements": {"temperature": 21}})

    everything = api_client.get("/sensors").json()
    assert everything["total"] == 2
    assert [item["sensor"]["sensor_id"] for item in everything["sensors"]] == ["ENV-01", "ENV-02"]
    assert everything["sensors"][0]["latest_reading"]["measurements"] == {"temperature": 21.0}
    assert everything["sensors"][1]["latest_reading"] is None

    north = api_client.get("/sensors", params={"region": "north"}).json()
    assert [item["sensor"]["sensor_id"] for item in north["sensors"]] == ["ENV-01"]

    offline = api_client.get("/sensors", params={"online": "false"}).json()
    assert [item["sensor"]["sensor_id"] for item in offline["sensors"]] == ["ENV-02"]

    active = api_client.get("/sensors", params={"status": "active", "limit": 1, "offset": 1})
    assert active.json()["total"] == 2
    assert [item["sensor"]["sensor_id"] for item in active.json()["sensors"]] == ["ENV-02"]

    assert api_client.get("/sensors", params={"status": "retired"}).status_code == 422


def test_sensor_reading_history(api_client: TestClient) -> None:
    base = NOW - timedelta(hours=3)
    for minutes, payload in (
        (0, {"measurements": {"temperature": 20, "humidity": 40}}),
        (30, {"measurements": {"temperature": 25, "humidity": 45}}),
        (
            60,
            {
                "measurements": {"co2": 500},
                "device_metadata": {"battery_level": 5, "signal_strength": -110},
            },
        ),
    ):
        body = {**payload, "timestamp": _iso(base + timedelta(minutes=minutes))}
        assert api_client.post("/sensors/env-01/readings", json=body).status_code == 201

    history = api_client.get("/sensors/env-01/readings").json()
    assert history["sensor_id"] == "ENV-01"
    assert history["total"] == 3
    assert [reading["measurements"].get("temperature") for reading in history["readings"]] == [
        None,
        25.0,
        20.0,
    ]

    poor = api_client.get("/sensors/env-01/readings", params={"quality": "poor"}).json()
    assert poor["total"] == 1

    windowed = api_client.get(
        "/sensors/env-01/readings",
        params={"start": _iso(base + timedelta(minutes=15)), "limit": 1},
    ).json()
    assert windowed["total"] == 2
    assert len(windowed["readings"]) == 1

    assert api_client.get("/sensors/ghost/readings").status_code == 404
