"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.records import (
    AlertEvent,
    AlertFact,
    Capability,
    Location,
    MaintenanceStatus,
    QualityCategory,
    QualityFlag,
    Reading,
    Sensor,
    SensorStatus,
    ThresholdBand,
)
from services.analytics import ReadingPage, SensorOverview, SensorPage
from services.aggregator import (
    AlertSummary,
    AlertTrendBucket,
    ParameterStats,
    RollupEntry,
    SeriesBucket,
)
from services.health import SensorHealth
from services.ingestion import BatchItemResult, IngestCommand


class ReadingSubmission(BaseModel):
    """Payload accepted by the single-reading ingestion endpoint.

    Measurement values, device metadata and location are validated by the
    ingestion service, so a bad value is reported the same way whether it
    arrives over HTTP or from an in-process caller. Within a batch it rejects
    only its own item.
    """

    measurements: Dict[str, Any] = Field(default_factory=dict)
    custom_measurements: Dict[str, Any] = Field(default_factory=dict)
    device_metadata: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None
    location: Optional[Dict[str, Any]] = None


class BatchReadingSubmission(ReadingSubmission):
    sensor_id: str = Field(..., min_length=1)

    def to_command(self) -> IngestCommand:
        return IngestCommand(
            sensor_id=self.sensor_id,
            measurements=self.measurements,
            device_metadata=self.device_metadata,
            timestamp=self.timestamp,
            custom_measurements=self.custom_measurements,
            location=self.location,
        )


class BatchSubmission(BaseModel):
    readings: List[BatchReadingSubmission] = Field(..., min_length=1)


class IngestResponse(BaseModel):
    """Derived facts returned once a reading is stored."""

    reading_id: str
    sensor_id: str
    timestamp: datetime
    quality_score: int = Field(..., ge=0, le=100)
    quality_category: QualityCategory
    quality_flags: List[QualityFlag] = Field(default_factory=list)
    alerts: List[AlertFact] = Field(default_factory=list)

    @classmethod
    def from_reading(cls, reading: Reading) -> "IngestResponse":
        return cls(
            reading_id=reading.reading_id,
            sensor_id=reading.sensor_id,
            timestamp=reading.timestamp,
            quality_score=reading.quality_score,
            quality_category=reading.quality_category,
            quality_flags=list(reading.quality_flags),
            alerts=list(reading.alerts),
        )


class BatchItemResponse(BaseModel):
    index: int = Field(..., ge=0)
    sensor_id: str
    accepted: bool
    result: Optional[IngestResponse] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def from_result(cls, item: BatchItemResult) -> "BatchItemResponse":
        return cls(
            index=item.index,
            sensor_id=item.sensor_id,
            accepted=item.accepted,
            result=IngestResponse.from_reading(item.reading) if item.reading else None,
            error=item.error,
            error_type=item.error_type,
        )


class BatchResponse(BaseModel):
    accepted: int = Field(..., ge=0)
    rejected: int = Field(..., ge=0)
    items: List[BatchItemResponse] = Field(default_factory=list)


class ParameterStatsResponse(BaseModel):
    count: int = Field(..., ge=0)
    avg: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None

    @classmethod
    def from_stats(cls, stats: ParameterStats) -> "ParameterStatsResponse":
        return cls(count=stats.count, avg=stats.avg, min=stats.min_value, max=stats.max_value)


class SeriesBucketResponse(BaseModel):
    bucket: datetime
    count: int = Field(..., ge=0)
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    parameters: Dict[str, ParameterStatsResponse] = Field(default_factory=dict)

    @classmethod
    def from_bucket(cls, bucket: SeriesBucket) -> "SeriesBucketResponse":
        return cls(
            bucket=bucket.bucket_start,
            count=bucket.count,
            first_timestamp=bucket.first_timestamp,
            last_timestamp=bucket.last_timestamp,
            parameters={
                name: ParameterStatsResponse.from_stats(stats)
                for name, stats in bucket.parameters.items()
            },
        )


class SeriesResponse(BaseModel):
    sensor_id: str
    granularity: str
    start: datetime
    end: datetime
    total_count: int = Field(..., ge=0)
    buckets: List[SeriesBucketResponse] = Field(default_factory=list)


class LatestResponse(BaseModel):
    count: int = Field(..., ge=0)
    readings: List[Reading] = Field(default_factory=list)


class AlertTrendBucketResponse(BaseModel):
    bucket: datetime
    count: int = Field(..., ge=0)
    high: int = Field(..., ge=0)
    medium: int = Field(..., ge=0)
    low: int = Field(..., ge=0)

    @classmethod
    def from_bucket(cls, bucket: AlertTrendBucket) -> "AlertTrendBucketResponse":
        return cls(
            bucket=bucket.bucket_start,
            count=bucket.count,
            high=bucket.high,
            medium=bucket.medium,
            low=bucket.low,
        )


class AlertTrendResponse(BaseModel):
    granularity: str
    start: datetime
    end: datetime
    total: int = Field(..., ge=0)
    buckets: List[AlertTrendBucketResponse] = Field(default_factory=list)


class AlertSummaryResponse(BaseModel):
    total: int = Field(0, ge=0)
    high: int = Field(0, ge=0)
    medium: int = Field(0, ge=0)
    low: int = Field(0, ge=0)
    by_type: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_summary(cls, summary: AlertSummary) -> "AlertSummaryResponse":
        return cls(
            total=summary.total,
            high=summary.high,
            medium=summary.medium,
            low=summary.low,
            by_type=dict(summary.by_type),
        )


class AlertListResponse(BaseModel):
    start: datetime
    end: datetime
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)
    alerts: List[AlertEvent] = Field(default_factory=list)
    summary: AlertSummaryResponse = Field(default_factory=AlertSummaryResponse)


class RollupEntryResponse(BaseModel):
    key: str
    count: int = Field(..., ge=0)
    breakdown: Dict[str, int] = Field(default_factory=dict)
    sensor_count: int = Field(..., ge=0)
    alert_types: List[str] = Field(default_factory=list)
    last_alert: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: RollupEntry) -> "RollupEntryResponse":
        return cls(
            key=entry.key,
            count=entry.count,
            breakdown=dict(entry.breakdown),
            sensor_count=entry.sensor_count,
            alert_types=list(entry.alert_types),
            last_alert=entry.last_alert,
        )


class RollupResponse(BaseModel):
    dimension: str
    start: datetime
    end: datetime
    entries: List[RollupEntryResponse] = Field(default_factory=list)


class SensorHealthResponse(BaseModel):
    sensor_id: str
    online: bool
    maintenance_status: MaintenanceStatus
    seconds_since_heartbeat: Optional[float] = None

    @classmethod
    def from_health(cls, health: SensorHealth) -> "SensorHealthResponse":
        return cls(
            sensor_id=health.sensor_id,
            online=health.online,
            maintenance_status=health.maintenance,
            seconds_since_heartbeat=health.seconds_since_heartbeat,
        )


class SensorRegistration(BaseModel):
    sensor_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    region: Optional[str] = None
    location: Optional[Location] = None
    status: SensorStatus = SensorStatus.active
    capabilities: List[Capability] = Field(default_factory=list)
    thresholds: Dict[str, ThresholdBand] = Field(default_factory=dict)
    heartbeat_interval: int = Field(default=300, ge=1)
    next_maintenance: Optional[datetime] = None

    def to_sensor(self) -> Sensor:
        return Sensor(**self.model_dump())


class SensorResponse(BaseModel):
    sensor: Sensor
    online: bool
    maintenance_status: MaintenanceStatus
    seconds_since_heartbeat: Optional[float] = None
    latest_reading: Optional[Reading] = None

    @classmethod
    def from_overview(cls, overview: SensorOverview) -> "SensorResponse":
        return cls(
            sensor=overview.sensor,
            online=overview.health.online,
            maintenance_status=overview.health.maintenance,
            seconds_since_heartbeat=overview.health.seconds_since_heartbeat,
            latest_reading=overview.latest,
        )


class SensorListResponse(BaseModel):
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)
    sensors: List[SensorResponse] = Field(default_factory=list)

    @classmethod
    def from_page(cls, page: SensorPage, limit: int, offset: int) -> "SensorListResponse":
        return cls(
            total=page.total,
            limit=limit,
            offset=offset,
            sensors=[SensorResponse.from_overview(item) for item in page.items],
        )


class ReadingListResponse(BaseModel):
    sensor_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)
    readings: List[Reading] = Field(default_factory=list)

    @classmethod
    def from_page(
        cls,
        sensor_id: str,
        page: ReadingPage,
        start: Optional[datetime],
        end: Optional[datetime],
        limit: int,
        offset: int,
    ) -> "ReadingListResponse":
        return cls(
            sensor_id=sensor_id,
            start=start,
            end=end,
            total=page.total,
            limit=limit,
            offset=offset,
            readings=list(page.items),
        )
