"""Ingestion write path: validate, score, derive alerts, store, fan out."""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import uuid4

from pydantic import ValidationError as ModelValidationError

from datastore.reading_store import ReadingStore, build_default_store
from models.records import (
    KNOWN_PARAMETERS,
    DeviceMetadata,
    Location,
    Reading,
    Sensor,
    ensure_utc,
    normalize_sensor_id,
)
from registry.sensor_registry import SensorRegistry, build_default_registry
from services.alerts import derive_alerts
from services.errors import (
    FutureTimestamp,
    SensorNotFound,
    StoreUnavailable,
    TelemetryError,
    ValidationError,
)
from services.notifier import (
    ALERT_EVENT,
    READING_EVENT,
    EventNotifier,
    TelemetryEvent,
    build_default_notifier,
)
from services.quality import score_quality
from services.severity import materialize_alerts
from settings import get_settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
MetadataInput = Union[DeviceMetadata, Mapping[str, Any], None]
LocationInput = Union[Location, Mapping[str, Any], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IngestCommand:
    """One measurement submitted for ingestion."""

    sensor_id: str
    measurements: Mapping[str, Any]
    device_metadata: MetadataInput = None
    timestamp: Optional[datetime] = None
    custom_measurements: Optional[Mapping[str, Any]] = None
    location: LocationInput = None


@dataclass(frozen=True)
class BatchItemResult:
    index: int
    sensor_id: str
    reading: Optional[Reading] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.reading is not None


def _coerce_value(name: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Measurement {name!r} must be numeric, got {value!r}.")
    number = float(value)
    if not math.isfinite(number):
        raise ValidationError(f"Measurement {name!r} must be a finite number.")
    return number


def coerce_measurements(raw: Any, *, custom: bool = False) -> Dict[str, float]:
    """Validate a measurement map and return it with float values, order kept.

    ``None`` values are dropped and treat the parameter as absent.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError("Measurements must be a mapping of parameter to value.")

    coerced: Dict[str, float] = {}
    for name, value in raw.items():
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Measurement names must be non-empty strings.")
        if custom and name in KNOWN_PARAMETERS:
            raise ValidationError(
                f"Custom measurement {name!r} shadows a standard parameter."
            )
        if not custom and name not in KNOWN_PARAMETERS:
            raise ValidationError(
                f"Unknown parameter {name!r}; submit it as a custom measurement."
            )
        number = _coerce_value(name, value)
        if number is not None:
            coerced[name] = number
    return coerced


def _coerce_model(model: type, raw: Any, label: str) -> Any:
    if raw is None or isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except ModelValidationError as exc:
        raise ValidationError(f"Invalid {label}: {exc.errors()[0]['msg']}") from exc


class IngestionService:
    """Coordinates validation, scoring, alert derivation and storage."""

    def __init__(
        self,
        store: ReadingStore,
        registry: SensorRegistry,
        notifier: Optional[EventNotifier] = None,
        workers: int = 4,
        clock: Clock = _utc_now,
    ) -> None:
        self.store = store
        self.registry = registry
        self.notifier = notifier or EventNotifier()
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self._clock = clock

    def ingest(
        self,
        sensor_id: str,
        measurements: Mapping[str, Any],
        device_metadata: MetadataInput = None,
        timestamp: Optional[datetime] = None,
        custom_measurements: Optional[Mapping[str, Any]] = None,
        location: LocationInput = None,
    ) -> Reading:
        """Score, alert-check and persist one measurement.

        Raises ``SensorNotFound``, ``ValidationError`` or ``FutureTimestamp``
        before anything is written.
        """
        started = time.perf_counter()
        key = normalize_sensor_id(sensor_id)
        try:
            reading = self._build_reading(
                key, measurements, device_metadata, timestamp, custom_measurements, location
            )
        except TelemetryError as exc:
            logger.warning(
                "Rejected reading",
                extra={"sensor_id": key, "reason": str(exc)},
            )
            raise

        self.store.append(reading)
        self._record_heartbeat(key, reading.received_at)
        self._publish(reading)

        logger.info(
            "Reading accepted",
            extra={
                "sensor_id": key,
                "reading_id": reading.reading_id,
                "quality_score": reading.quality_score,
                "quality_category": reading.quality_category,
                "alert_count": len(reading.alerts),
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        return reading

    def ingest_batch(self, commands: Sequence[IngestCommand]) -> List[BatchItemResult]:
        """Ingest independent measurements in parallel, reporting each outcome."""
        results = list(self.executor.map(self._ingest_item, enumerate(commands)))
        rejected = sum(1 for result in results if not result.accepted)
        logger.info(
            "Batch ingested",
            extra={"row_count": len(results), "reason": f"{rejected} rejected" if rejected else None},
        )
        return results

    def register_sensor(self, sensor: Sensor) -> Sensor:
        """Add a sensor to the registry; duplicates raise ``SensorAlreadyRegistered``."""
        created = self.registry.create(sensor)
        logger.info("Sensor registered", extra={"sensor_id": created.sensor_id})
        return created

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _ingest_item(self, item: Tuple[int, IngestCommand]) -> BatchItemResult:
        index, command = item
        try:
            reading = self.ingest(
                command.sensor_id,
                command.measurements,
                device_metadata=command.device_metadata,
                timestamp=command.timestamp,
                custom_measurements=command.custom_measurements,
                location=command.location,
            )
        except TelemetryError as exc:
            return BatchItemResult(
                index=index,
                sensor_id=normalize_sensor_id(command.sensor_id),
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return BatchItemResult(index=index, sensor_id=reading.sensor_id, reading=reading)

    def _build_reading(
        self,
        sensor_id: str,
        measurements: Mapping[str, Any],
        device_metadata: MetadataInput,
        timestamp: Optional[datetime],
        custom_measurements: Optional[Mapping[str, Any]],
        location: LocationInput,
    ) -> Reading:
        sensor = self.registry.require(sensor_id)

        standard = coerce_measurements(measurements)
        custom = coerce_measurements(custom_measurements, custom=True)
        metadata = _coerce_model(DeviceMetadata, device_metadata, "device metadata")
        position = _coerce_model(Location, location, "location") or sensor.location

        now = self._clock()
        taken_at = ensure_utc(timestamp) if timestamp is not None else now
        if taken_at > now:
            raise FutureTimestamp(
                f"Reading timestamp {taken_at.isoformat()} is after the current time."
            )

        assessment = score_quality(standard, metadata)
        profile = self.registry.get_threshold_profile(sensor_id)
        combined = dict(standard)
        combined.update(custom)
        alerts = derive_alerts(combined, profile)

        return Reading(
            reading_id=str(uuid4()),
            sensor_id=sensor_id,
            timestamp=taken_at,
            received_at=now,
            location=position,
            measurements=standard,
            custom_measurements=custom,
            quality_score=assessment.score,
            quality_category=assessment.category,
            quality_flags=assessment.flags,
            alerts=alerts,
            device_metadata=metadata or DeviceMetadata(),
        )

    def _record_heartbeat(self, sensor_id: str, at: datetime) -> None:
        try:
            self.registry.record_heartbeat(sensor_id, at)
        except SensorNotFound:
            logger.warning(
                "Sensor vanished before heartbeat could be recorded",
                extra={"sensor_id": sensor_id},
            )
        except StoreUnavailable as exc:
            logger.warning(
                "Heartbeat not persisted; reading kept",
                extra={"sensor_id": sensor_id, "reason": str(exc)},
            )

    def _publish(self, reading: Reading) -> None:
        self.notifier.publish(
            TelemetryEvent(kind=READING_EVENT, sensor_id=reading.sensor_id, reading=reading)
        )
        if not reading.alerts:
            return
        events = materialize_alerts(reading)
        self.notifier.publish(
            TelemetryEvent(
                kind=ALERT_EVENT, sensor_id=reading.sensor_id, reading=reading, alerts=events
            )
        )


@lru_cache
def build_default_ingestion(workers: Optional[int] = None) -> IngestionService:
    """Factory that wires ingestion with the default store and registry."""
    worker_count = workers or get_settings().ingest_workers
    return IngestionService(
        store=build_default_store(),
        registry=build_default_registry(),
        notifier=build_default_notifier(),
        workers=worker_count,
    )
