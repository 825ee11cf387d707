"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    AlertListResponse,
    AlertSummaryResponse,
    AlertTrendBucketResponse,
    AlertTrendResponse,
    BatchItemResponse,
    BatchResponse,
    BatchSubmission,
    IngestResponse,
    LatestResponse,
    ReadingListResponse,
    ReadingSubmission,
    RollupEntryResponse,
    RollupResponse,
    SensorHealthResponse,
    SensorListResponse,
    SensorRegistration,
    SensorResponse,
    SeriesBucketResponse,
    SeriesResponse,
)
from models.records import (
    QualityCategory,
    SensorStatus,
    SeverityTier,
    ensure_utc,
    normalize_sensor_id,
)
from services.analytics import AnalyticsService, build_default_analytics
from services.errors import (
    QueryTimeout,
    SensorAlreadyRegistered,
    SensorNotFound,
    StoreUnavailable,
    TelemetryError,
)
from services.health import sensor_health as compute_health
from services.ingestion import IngestionService, build_default_ingestion

router = APIRouter()

DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_ALERT_WINDOW = timedelta(days=7)


def get_ingestion() -> IngestionService:
    return build_default_ingestion()


def get_analytics() -> AnalyticsService:
    return build_default_analytics()


def _http_error(exc: TelemetryError) -> HTTPException:
    if isinstance(exc, SensorNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, SensorAlreadyRegistered):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, QueryTimeout):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(exc, StoreUnavailable):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


def _resolve_window(
    start: Optional[datetime], end: Optional[datetime], span: timedelta
) -> Tuple[datetime, datetime]:
    window_end = ensure_utc(end) if end else datetime.now(timezone.utc)
    window_start = ensure_utc(start) if start else window_end - span
    return window_start, window_end


@router.post(
    "/sensors/{sensor_id}/readings",
    status_code=status.HTTP_201_CREATED,
    response_model=IngestResponse,
    summary="Ingest one measurement for a registered sensor.",
)
def ingest_reading(
    sensor_id: str,
    submission: ReadingSubmission,
    ingestion: IngestionService = Depends(get_ingestion),
) -> IngestResponse:
    try:
        reading = ingestion.ingest(
            sensor_id,
            submission.measurements,
            device_metadata=submission.device_metadata,
            timestamp=submission.timestamp,
            custom_measurements=submission.custom_measurements,
            location=submission.location,
        )
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return IngestResponse.from_reading(reading)


@router.post(
    "/sensors",
    status_code=status.HTTP_201_CREATED,
    response_model=SensorResponse,
    summary="Register a new sensor.",
)
def register_sensor(
    registration: SensorRegistration,
    ingestion: IngestionService = Depends(get_ingestion),
) -> SensorResponse:
    try:
        sensor = ingestion.register_sensor(registration.to_sensor())
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    health = compute_health(sensor, datetime.now(timezone.utc))
    return SensorResponse(
        sensor=sensor,
        online=health.online,
        maintenance_status=health.maintenance,
        seconds_since_heartbeat=health.seconds_since_heartbeat,
    )


@router.get(
    "/sensors",
    response_model=SensorListResponse,
    summary="Registered sensors with computed health and latest reading.",
)
def list_sensors(
    sensor_status: Optional[SensorStatus] = Query(None, alias="status"),
    region: Optional[str] = Query(None),
    online: Optional[bool] = Query(None, description="false lists the offline fleet."),
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    analytics: AnalyticsService = Depends(get_analytics),
) -> SensorListResponse:
    try:
        page = analytics.list_sensors(
            status=sensor_status, region=region, online=online, limit=limit, offset=offset
        )
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return SensorListResponse.from_page(page, limit=limit, offset=offset)


@router.get(
    "/sensors/{sensor_id}/readings",
    response_model=ReadingListResponse,
    summary="Raw reading history for one sensor, newest first.",
)
def sensor_readings(
    sensor_id: str,
    start: Optional[datetime] = Query(None, description="Inclusive; unbounded when omitted."),
    end: Optional[datetime] = Query(None, description="Exclusive; unbounded when omitted."),
    quality: Optional[QualityCategory] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    analytics: AnalyticsService = Depends(get_analytics),
) -> ReadingListResponse:
    window_start = ensure_utc(start) if start else None
    window_end = ensure_utc(end) if end else None
    try:
        page = analytics.list_readings(
            sensor_id,
            start=window_start,
            end=window_end,
            quality=quality,
            limit=limit,
            offset=offset,
        )
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return ReadingListResponse.from_page(
        normalize_sensor_id(sensor_id), page, window_start, window_end, limit, offset
    )


@router.post(
    "/readings/batch",
    response_model=BatchResponse,
    summary="Ingest several measurements; each item succeeds or fails on its own.",
)
def ingest_batch(
    submission: BatchSubmission,
    ingestion: IngestionService = Depends(get_ingestion),
) -> BatchResponse:
    results = ingestion.ingest_batch([item.to_command() for item in submission.readings])
    items = [BatchItemResponse.from_result(result) for result in results]
    accepted = sum(1 for item in items if item.accepted)
    return BatchResponse(accepted=accepted, rejected=len(items) - accepted, items=items)


@router.get(
    "/sensors/{sensor_id}/series",
    response_model=SeriesResponse,
    summary="Time-bucketed statistics for one sensor.",
)
def sensor_series(
    sensor_id: str,
    granularity: str = Query("hour", description="hour, day, week or month."),
    start: Optional[datetime] = Query(None, description="Inclusive; defaults to end - 24h."),
    end: Optional[datetime] = Query(None, description="Exclusive; defaults to now."),
    analytics: AnalyticsService = Depends(get_analytics),
) -> SeriesResponse:
    window_start, window_end = _resolve_window(start, end, DEFAULT_WINDOW)
    try:
        buckets = analytics.query_series(sensor_id, window_start, window_end, granularity)
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return SeriesResponse(
        sensor_id=normalize_sensor_id(sensor_id),
        granularity=granularity.strip().lower(),
        start=window_start,
        end=window_end,
        total_count=sum(bucket.count for bucket in buckets),
        buckets=[SeriesBucketResponse.from_bucket(bucket) for bucket in buckets],
    )


@router.get(
    "/sensors/{sensor_id}/health",
    response_model=SensorHealthResponse,
    summary="Computed online and maintenance status for a sensor.",
)
def sensor_health(
    sensor_id: str,
    analytics: AnalyticsService = Depends(get_analytics),
) -> SensorHealthResponse:
    try:
        health = analytics.sensor_health(sensor_id)
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return SensorHealthResponse.from_health(health)


@router.get(
    "/readings/latest",
    response_model=LatestResponse,
    summary="Most recent reading per sensor.",
)
def latest_readings(
    sensor_id: Optional[List[str]] = Query(None, description="Repeat to select several sensors."),
    analytics: AnalyticsService = Depends(get_analytics),
) -> LatestResponse:
    try:
        readings = analytics.query_latest(sensor_id)
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return LatestResponse(count=len(readings), readings=readings)


@router.get(
    "/alerts",
    response_model=AlertListResponse,
    summary="Alert events derived from stored readings, newest first.",
)
def list_alerts(
    start: Optional[datetime] = Query(None, description="Inclusive; defaults to end - 7d."),
    end: Optional[datetime] = Query(None, description="Exclusive; defaults to now."),
    severity: Optional[SeverityTier] = Query(None),
    alert_type: Optional[str] = Query(None, alias="type"),
    sensor_id: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    analytics: AnalyticsService = Depends(get_analytics),
) -> AlertListResponse:
    window_start, window_end = _resolve_window(start, end, DEFAULT_ALERT_WINDOW)
    try:
        page = analytics.list_alerts(
            window_start,
            window_end,
            severity=severity,
            alert_type=alert_type,
            sensor_id=sensor_id,
            limit=limit,
            offset=offset,
        )
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return AlertListResponse(
        start=window_start,
        end=window_end,
        total=page.total,
        limit=limit,
        offset=offset,
        alerts=page.items,
        summary=AlertSummaryResponse.from_summary(page.summary),
    )


@router.get(
    "/alerts/trend",
    response_model=AlertTrendResponse,
    summary="Alert counts per time bucket, split by severity tier.",
)
def alert_trend(
    granularity: str = Query("hour", description="hour, day, week or month."),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    analytics: AnalyticsService = Depends(get_analytics),
) -> AlertTrendResponse:
    window_start, window_end = _resolve_window(start, end, DEFAULT_WINDOW)
    try:
        buckets = analytics.query_alert_trend(window_start, window_end, granularity)
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return AlertTrendResponse(
        granularity=granularity.strip().lower(),
        start=window_start,
        end=window_end,
        total=sum(bucket.count for bucket in buckets),
        buckets=[AlertTrendBucketResponse.from_bucket(bucket) for bucket in buckets],
    )


@router.get(
    "/alerts/summary",
    response_model=AlertSummaryResponse,
    summary="Alert totals by severity tier and type.",
)
def alert_summary(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    analytics: AnalyticsService = Depends(get_analytics),
) -> AlertSummaryResponse:
    window_start, window_end = _resolve_window(start, end, DEFAULT_WINDOW)
    try:
        summary = analytics.query_alert_summary(window_start, window_end)
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return AlertSummaryResponse.from_summary(summary)


@router.get(
    "/alerts/rollup",
    response_model=RollupResponse,
    summary="Alert counts grouped by region or sensor.",
)
def alert_rollup(
    dimension: str = Query("region", description="region or sensor."),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    analytics: AnalyticsService = Depends(get_analytics),
) -> RollupResponse:
    window_start, window_end = _resolve_window(start, end, DEFAULT_WINDOW)
    try:
        entries = analytics.query_rollup(dimension, window_start, window_end, limit=limit)
    except TelemetryError as exc:
        raise _http_error(exc) from exc
    return RollupResponse(
        dimension=dimension.strip().lower(),
        start=window_start,
        end=window_end,
        entries=[RollupEntryResponse.from_entry(entry) for entry in entries],
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
