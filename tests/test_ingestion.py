from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List

import pytest

from datastore.reading_store import ReadingStore
from models.records import (
    AlertLevel,
    QualityCategory,
    QualityFlagKind,
    Sensor,
    SeverityTier,
    ThresholdBand,
)
from registry.sensor_registry import SensorRegistry
from services.errors import (
    FutureTimestamp,
    SensorAlreadyRegistered,
    SensorNotFound,
    ValidationError,
)
from services.ingestion import IngestCommand, IngestionService, coerce_measurements
from services.notifier import ALERT_EVENT, READING_EVENT, EventNotifier, TelemetryEvent

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service() -> Iterator[IngestionService]:
    registry = SensorRegistry()
    registry.register(
        Sensor(
            sensor_id="env-01",
            name="Rooftop",
            region="north",
            thresholds={
                "temperature": ThresholdBand(warning_max=35, critical_max=45),
                "radon": ThresholdBand(warning_max=100),
            },
        )
    )
    ingestion = IngestionService(
        store=ReadingStore(name="test"),
        registry=registry,
        notifier=EventNotifier(),
        workers=2,
        clock=lambda: NOW,
    )
    yield ingestion
    ingestion.shutdown()


def test_ingest_scores_alerts_and_stores(service: IngestionService) -> None:
    reading = service.ingest("env-01", {"temperature": 40, "humidity": 50})

    assert reading.sensor_id == "ENV-01"
    assert reading.quality_score == 100
    assert reading.quality_category == QualityCategory.excellent
    assert [(a.type, a.measured_value, a.threshold_value) for a in reading.alerts] == [
        ("temperature_high", 40.0, 35.0)
    ]
    assert reading.alerts[0].level == AlertLevel.warning
    assert reading.timestamp == NOW
    assert reading.received_at == NOW
    assert service.store.get(reading.reading_id) == reading


def test_ingest_records_heartbeat(service: IngestionService) -> None:
    service.ingest("env-01", {"temperature": 20, "humidity": 40}, timestamp=NOW - timedelta(hours=1))

    metadata = service.registry.get_sensor_metadata("env-01")
    assert metadata.last_heartbeat == NOW


def test_ingest_flags_missing_data_and_low_battery(service: IngestionService) -> None:
    reading = service.ingest("env-01", {}, device_metadata={"battery_level": 10})

    assert reading.quality_score == 55
    assert reading.quality_category == QualityCategory.fair
    assert [flag.kind for flag in reading.quality_flags] == [
        QualityFlagKind.missing_data,
        QualityFlagKind.sensor_error,
    ]


def test_custom_measurements_are_stored_and_alerted(service: IngestionService) -> None:
    reading = service.ingest(
        "env-01",
        {"temperature": 20, "humidity": 40},
        custom_measurements={"radon": 150},
    )

    assert reading.custom_measurements == {"radon": 150.0}
    assert [alert.type for alert in reading.alerts] == ["radon_high"]


def test_unknown_sensor_is_rejected(service: IngestionService) -> None:
    with pytest.raises(SensorNotFound):
        service.ingest("ghost", {"temperature": 20})

    assert len(service.store) == 0


def test_future_timestamp_is_rejected(service: IngestionService) -> None:
    with pytest.raises(FutureTimestamp):
        service.ingest("env-01", {"temperature": 20}, timestamp=NOW + timedelta(seconds=1))

    assert len(service.store) == 0


@pytest.mark.parametrize(
    "measurements",
    [
        {"temperature": "hot"},
        {"temperature": True},
        {"temperature": float("nan")},
        {"radon": 12},
    ],
)
def test_invalid_measurements_write_nothing(service: IngestionService, measurements) -> None:
    with pytest.raises(ValidationError):
        service.ingest("env-01", measurements)

    assert len(service.store) == 0
    assert service.registry.get_sensor_metadata("env-01").last_heartbeat is None


def test_invalid_device_metadata_is_a_validation_error(service: IngestionService) -> None:
    with pytest.raises(ValidationError):
        service.ingest("env-01", {"temperature": 20}, device_metadata={"battery_level": 140})


def test_coerce_measurements_drops_none_and_keeps_order() -> None:
    coerced = coerce_measurements({"humidity": 40, "temperature": None, "co2": 400.5})

    assert list(coerced.items()) == [("humidity", 40.0), ("co2", 400.5)]


def test_custom_measurement_cannot_shadow_standard_parameter() -> None:
    with pytest.raises(ValidationError):
        coerce_measurements({"temperature": 1}, custom=True)


def test_notifier_receives_reading_and_alert_events(service: IngestionService) -> None:
    received: List[TelemetryEvent] = []
    service.notifier.subscribe(received.append)

    service.ingest("env-01", {"temperature": 50, "humidity": 40})
    service.ingest("env-01", {"temperature": 20, "humidity": 40})

    assert [event.kind for event in received] == [READING_EVENT, ALERT_EVENT, READING_EVENT]
    alert_event = received[1]
    assert alert_event.alerts[0].alert.type == "temperature_high"
    assert alert_event.alerts[0].alert.level == AlertLevel.critical
    assert alert_event.alerts[0].severity == SeverityTier.medium


def test_rejected_reading_is_logged(service: IngestionService, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="services.ingestion")

    with pytest.raises(SensorNotFound):
        service.ingest("ghost", {"temperature": 20})

    assert any(record.message == "Rejected reading" for record in caplog.records)
    record = next(record for record in caplog.records if record.message == "Rejected reading")
    assert record.sensor_id == "GHOST"


def test_batch_reports_each_item(service: IngestionService) -> None:
    results = service.ingest_batch(
        [
            IngestCommand(sensor_id="env-01", measurements={"temperature": 20, "humidity": 30}),
            IngestCommand(sensor_id="ghost", measurements={"temperature": 20}),
            IngestCommand(sensor_id="env-01", measurements={"temperature": "x"}),
        ]
    )

    assert [result.index for result in results] == [0, 1, 2]
    assert [result.accepted for result in results] == [True, False, False]
    assert results[1].error_type == "SensorNotFound"
    assert results[2].error_type == "ValidationError"
    assert len(service.store) == 1


def test_heartbeat_write_failure_keeps_reading(tmp_path: Path, caplog) -> None:
    registry_path = tmp_path / "sensors.json"
    registry = SensorRegistry(persistence_path=registry_path)
    registry.register(Sensor(sensor_id="env-01", name="Rooftop"))
    registry_path.unlink()
    registry_path.mkdir()
    ingestion = IngestionService(
        store=ReadingStore(name="test"), registry=registry, workers=1, clock=lambda: NOW
    )
    caplog.set_level(logging.WARNING, logger="services.ingestion")

    try:
        reading = ingestion.ingest("env-01", {"temperature": 20})
    finally:
        ingestion.shutdown()

    assert ingestion.store.get(reading.reading_id) is not None
    assert len(ingestion.store) == 1
    assert registry.require("env-01").last_heartbeat is None
    record = next(
        record for record in caplog.records if record.message == "Heartbeat not persisted; reading kept"
    )
    assert record.sensor_id == "ENV-01"


def test_register_sensor_rejects_duplicates(service: IngestionService) -> None:
    created = service.register_sensor(Sensor(sensor_id=" env-02 ", name="Basement"))

    assert created.sensor_id == "ENV-02"
    assert service.registry.get("env-02") is not None
    with pytest.raises(SensorAlreadyRegistered):
        service.register_sensor(Sensor(sensor_id="env-01", name="Again"))
