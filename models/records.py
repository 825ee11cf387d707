"""Domain models shared across services."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

KNOWN_PARAMETERS = (
    "temperature",
    "humidity",
    "pressure",
    "air_quality",
    "pm2_5",
    "pm10",
    "co2",
    "co",
    "no2",
    "so2",
    "o3",
    "ph",
    "turbidity",
    "dissolved_oxygen",
    "conductivity",
    "tds",
    "noise",
)


def normalize_sensor_id(sensor_id: str) -> str:
    return sensor_id.strip().upper()


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class QualityCategory(str, Enum):
    """Trust tiers derived from the quality score."""

    excellent = "excellent"
    good = "good"
    fair = "fair"
    poor = "poor"
    invalid = "invalid"


ANALYTICS_CATEGORIES = frozenset(
    {QualityCategory.excellent, QualityCategory.good, QualityCategory.fair}
)


class QualityFlagKind(str, Enum):
    outlier = "outlier"
    missing_data = "missing_data"
    sensor_error = "sensor_error"
    calibration_needed = "calibration_needed"
    network_issue = "network_issue"


class FlagSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class AlertLevel(str, Enum):
    """Which band of a threshold profile an alert breached."""

    warning = "warning"
    critical = "critical"


class SeverityTier(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class Granularity(str, Enum):
    hour = "hour"
    day = "day"
    week = "week"
    month = "month"


class SensorStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    maintenance = "maintenance"
    error = "error"
    offline = "offline"


class MaintenanceStatus(str, Enum):
    unknown = "unknown"
    overdue = "overdue"
    due_soon = "due_soon"
    upcoming = "upcoming"
    scheduled = "scheduled"


class Location(BaseModel):
    """A longitude/latitude pair."""

    model_config = ConfigDict(frozen=True)

    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)


class DeviceMetadata(BaseModel):
    """Device state reported alongside a measurement."""

    model_config = ConfigDict(frozen=True)

    battery_level: Optional[float] = Field(default=None, ge=0, le=100)
    signal_strength: Optional[float] = Field(
        default=None, ge=-120, le=0, description="Signal strength in dBm."
    )
    firmware_version: Optional[str] = None


class QualityFlag(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: QualityFlagKind
    description: str
    severity: FlagSeverity


class AlertFact(BaseModel):
    """A single threshold breach captured at ingestion time."""

    model_config = ConfigDict(frozen=True)

    type: str
    measured_value: float
    threshold_value: float
    level: AlertLevel = AlertLevel.warning


class Reading(BaseModel):
    """One immutable, timestamped measurement with its derived facts."""

    model_config = ConfigDict(frozen=True)

    reading_id: str
    sensor_id: str
    timestamp: datetime
    received_at: datetime
    location: Optional[Location] = None
    measurements: Dict[str, float] = Field(default_factory=dict)
    custom_measurements: Dict[str, float] = Field(default_factory=dict)
    quality_score: int = Field(..., ge=0, le=100)
    quality_category: QualityCategory
    quality_flags: List[QualityFlag] = Field(default_factory=list)
    alerts: List[AlertFact] = Field(default_factory=list)
    device_metadata: DeviceMetadata = Field(default_factory=DeviceMetadata)

    @field_validator("timestamp", "received_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def all_measurements(self) -> Dict[str, float]:
        merged = dict(self.measurements)
        merged.update(self.custom_measurements)
        return merged


class ThresholdBand(BaseModel):
    """Warning and critical bounds for a single parameter."""

    model_config = ConfigDict(frozen=True)

    warning_min: Optional[float] = None
    warning_max: Optional[float] = None
    critical_min: Optional[float] = None
    critical_max: Optional[float] = None


ThresholdProfile = Dict[str, ThresholdBand]


class Capability(BaseModel):
    model_config = ConfigDict(frozen=True)

    parameter: str
    unit: str


class Sensor(BaseModel):
    """Registry entry for a deployed sensor."""

    sensor_id: str
    name: str
    region: Optional[str] = None
    location: Optional[Location] = None
    status: SensorStatus = SensorStatus.active
    capabilities: List[Capability] = Field(default_factory=list)
    thresholds: Dict[str, ThresholdBand] = Field(default_factory=dict)
    heartbeat_interval: int = Field(default=300, ge=1, description="Seconds.")
    last_heartbeat: Optional[datetime] = None
    next_maintenance: Optional[datetime] = None

    @field_validator("sensor_id")
    @classmethod
    def _normalize_sensor_id(cls, value: str) -> str:
        return normalize_sensor_id(value)

    @field_validator("last_heartbeat", "next_maintenance")
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None


class SensorMetadata(BaseModel):
    """The liveness view of a sensor exposed by the registry."""

    model_config = ConfigDict(frozen=True)

    status: SensorStatus
    heartbeat_interval: int
    last_heartbeat: Optional[datetime] = None


class AlertEvent(BaseModel):
    """An alert fact materialized from a stored reading at query time."""

    model_config = ConfigDict(frozen=True)

    reading_id: str
    alert_index: int = Field(..., ge=0)
    sensor_id: str
    timestamp: datetime
    alert: AlertFact
    severity: SeverityTier
