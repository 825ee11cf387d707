from __future__ import annotations

import json
import logging
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from models.records import (
    Sensor,
    SensorMetadata,
    ThresholdProfile,
    ensure_utc,
    normalize_sensor_id,
)
from services.errors import SensorAlreadyRegistered, SensorNotFound, StoreUnavailable
from settings import get_settings

logger = logging.getLogger(__name__)


class SensorRegistry:
    """File-backed registry of sensors, their threshold profiles and heartbeats."""

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self._sensors: Dict[str, Sensor] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def register(self, sensor: Sensor) -> None:
        with self._lock:
            self._replace(sensor.sensor_id, sensor.model_copy(deep=True))

    def create(self, sensor: Sensor) -> Sensor:
        """Register a new sensor; an existing identifier is rejected."""
        with self._lock:
            if sensor.sensor_id in self._sensors:
                raise SensorAlreadyRegistered(sensor.sensor_id)
            self._replace(sensor.sensor_id, sensor.model_copy(deep=True))
            return sensor.model_copy(deep=True)

    def get(self, sensor_id: str) -> Optional[Sensor]:
        with self._lock:
            sensor = self._sensors.get(normalize_sensor_id(sensor_id))
            if sensor is None:
                return None
            return sensor.model_copy(deep=True)

    def require(self, sensor_id: str) -> Sensor:
        sensor = self.get(sensor_id)
        if sensor is None:
            raise SensorNotFound(normalize_sensor_id(sensor_id))
        return sensor

    def list_sensors(self) -> List[Sensor]:
        with self._lock:
            return [self._sensors[key].model_copy(deep=True) for key in sorted(self._sensors)]

    def get_threshold_profile(self, sensor_id: str) -> ThresholdProfile:
        return dict(self.require(sensor_id).thresholds)

    def get_sensor_metadata(self, sensor_id: str) -> SensorMetadata:
        sensor = self.require(sensor_id)
        return SensorMetadata(
            status=sensor.status,
            heartbeat_interval=sensor.heartbeat_interval,
            last_heartbeat=sensor.last_heartbeat,
        )

    def region_of(self, sensor_id: str) -> Optional[str]:
        sensor = self.get(sensor_id)
        return sensor.region if sensor is not None else None

    def record_heartbeat(self, sensor_id: str, timestamp: datetime) -> None:
        """Advance the sensor's heartbeat; older timestamps are ignored."""
        key = normalize_sensor_id(sensor_id)
        heartbeat = ensure_utc(timestamp)
        with self._lock:
            sensor = self._sensors.get(key)
            if sensor is None:
                raise SensorNotFound(key)
            if sensor.last_heartbeat is not None and sensor.last_heartbeat >= heartbeat:
                return
            self._replace(key, sensor.model_copy(update={"last_heartbeat": heartbeat}))

    def _replace(self, key: str, sensor: Sensor) -> None:
        # Caller holds the lock. The previous entry is restored if the write fails.
        previous = self._sensors.get(key)
        self._sensors[key] = sensor
        try:
            self._persist()
        except StoreUnavailable:
            if previous is None:
                del self._sensors[key]
            else:
                self._sensors[key] = previous
            raise

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            sensor_id: sensor.model_dump(mode="json")
            for sensor_id, sensor in self._sensors.items()
        }
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        except OSError as exc:
            raise StoreUnavailable(f"Could not write sensor registry: {exc}") from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Sensor registry file unreadable; starting empty",
                extra={"reason": str(self.persistence_path)},
            )
            data = {}

        for payload in data.values():
            sensor = Sensor.model_validate(payload)
            self._sensors[sensor.sensor_id] = sensor


@lru_cache
def build_default_registry(path: Optional[str] = None) -> SensorRegistry:
    settings = get_settings()
    registry_path = settings.registry_path if path is None else path
    persistence = Path(registry_path) if registry_path else None
    return SensorRegistry(persistence_path=persistence)
