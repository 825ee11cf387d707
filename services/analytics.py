"""Read-only dashboard queries over the reading store."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, List, Optional, Sequence, Tuple

from datastore.reading_store import ReadingStore, build_default_store
from models.records import (
    AlertEvent,
    Granularity,
    QualityCategory,
    Reading,
    Sensor,
    SensorStatus,
    SeverityTier,
    ensure_utc,
    normalize_sensor_id,
)
from registry.sensor_registry import SensorRegistry, build_default_registry
from services.aggregator import (
    Aggregator,
    AlertSummary,
    AlertTrendBucket,
    QueryDeadline,
    RollupDimension,
    RollupEntry,
    SeriesBucket,
    parse_dimension,
    parse_granularity,
)
from services.errors import ValidationError
from services.health import SensorHealth, sensor_health
from settings import get_settings

logger = logging.getLogger(__name__)


@dataclass
class AlertPage:
    items: List[AlertEvent] = field(default_factory=list)
    total: int = 0
    summary: AlertSummary = field(default_factory=AlertSummary)


@dataclass
class ReadingPage:
    items: List[Reading] = field(default_factory=list)
    total: int = 0


@dataclass
class SensorOverview:
    sensor: Sensor
    health: SensorHealth
    latest: Optional[Reading] = None


@dataclass
class SensorPage:
    items: List[SensorOverview] = field(default_factory=list)
    total: int = 0


def _utc_window(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    return ensure_utc(start), ensure_utc(end)


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or offset < 0:
        raise ValidationError("Pagination requires limit >= 1 and offset >= 0.")


class AnalyticsService:
    """Runs aggregation queries against a snapshot of the reading store.

    Each query accepts ``timeout`` in seconds (falling back to the service
    default) and an optional ``cancel_event``. Both are checked while the
    store is scanned and again while readings are aggregated; when either
    trips, ``QueryTimeout`` or ``QueryCancelled`` is raised and nothing
    partial is returned. Naive window bounds are read as UTC.
    """

    def __init__(
        self,
        store: ReadingStore,
        registry: SensorRegistry,
        aggregator: Optional[Aggregator] = None,
        default_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.registry = registry
        self.aggregator = aggregator or Aggregator()
        self.default_timeout = default_timeout
        self._clock = clock

    def _deadline(
        self, timeout: Optional[float], cancel_event: Optional[threading.Event]
    ) -> QueryDeadline:
        budget = timeout if timeout is not None else self.default_timeout
        return QueryDeadline(timeout=budget, cancel_event=cancel_event)

    def query_series(
        self,
        sensor_id: str,
        start: datetime,
        end: datetime,
        granularity: str | Granularity,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SeriesBucket]:
        unit = parse_granularity(granularity)
        start, end = _utc_window(start, end)
        started = time.perf_counter()
        deadline = self._deadline(timeout, cancel_event)
        readings = self.store.scan(
            start=start, end=end, sensor_ids=[sensor_id], checkpoint=deadline.check
        )
        buckets = self.aggregator.series(readings, start, end, unit, deadline=deadline)
        logger.debug(
            "Series query complete",
            extra={
                "sensor_id": normalize_sensor_id(sensor_id),
                "granularity": unit,
                "bucket_count": len(buckets),
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        return buckets

    def query_latest(
        self,
        sensor_ids: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Reading]:
        deadline = self._deadline(timeout, cancel_event)
        readings = self.store.scan(sensor_ids=sensor_ids, checkpoint=deadline.check)
        return self.aggregator.latest(readings, sensor_ids=sensor_ids, deadline=deadline)

    def query_alert_trend(
        self,
        start: datetime,
        end: datetime,
        granularity: str | Granularity,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[AlertTrendBucket]:
        unit = parse_granularity(granularity)
        start, end = _utc_window(start, end)
        deadline = self._deadline(timeout, cancel_event)
        readings = self.store.scan(start=start, end=end, checkpoint=deadline.check)
        buckets = self.aggregator.alert_trend(readings, start, end, unit, deadline=deadline)
        logger.debug(
            "Alert trend query complete",
            extra={"granularity": unit, "bucket_count": len(buckets)},
        )
        return buckets

    def query_rollup(
        self,
        dimension: str | RollupDimension,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[RollupEntry]:
        axis = parse_dimension(dimension)
        if limit is not None and limit < 1:
            raise ValidationError("Rollup limit must be a positive integer.")
        start, end = _utc_window(start, end)
        deadline = self._deadline(timeout, cancel_event)
        readings = self.store.scan(start=start, end=end, checkpoint=deadline.check)
        entries = self.aggregator.rollup(
            readings,
            axis,
            start,
            end,
            resolve_region=self.registry.region_of,
            limit=limit,
            deadline=deadline,
        )
        logger.debug(
            "Rollup query complete",
            extra={"dimension": axis, "bucket_count": len(entries)},
        )
        return entries

    def query_alert_summary(
        self,
        start: datetime,
        end: datetime,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AlertSummary:
        start, end = _utc_window(start, end)
        deadline = self._deadline(timeout, cancel_event)
        readings = self.store.scan(start=start, end=end, checkpoint=deadline.check)
        return self.aggregator.alert_summary(readings, start, end, deadline=deadline)

    def list_alerts(
        self,
        start: datetime,
        end: datetime,
        severity: Optional[SeverityTier] = None,
        alert_type: Optional[str] = None,
        sensor_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AlertPage:
        """List alert events newest first, filtered and paginated.

        The summary covers the whole window, regardless of filters.
        """
        _check_page(limit, offset)
        start, end = _utc_window(start, end)
        deadline = self._deadline(timeout, cancel_event)
        readings = self.store.scan(start=start, end=end, checkpoint=deadline.check)
        events = self.aggregator.alert_events(readings, start, end, deadline=deadline)
        summary = self.aggregator.alert_summary(readings, start, end, deadline=deadline)

        wanted_sensor = normalize_sensor_id(sensor_id) if sensor_id else None
        matching = [
            event
            for event in events
            if (severity is None or event.severity == severity)
            and (alert_type is None or event.alert.type == alert_type)
            and (wanted_sensor is None or event.sensor_id == wanted_sensor)
        ]
        return AlertPage(
            items=matching[offset : offset + limit],
            total=len(matching),
            summary=summary,
        )

    def list_readings(
        self,
        sensor_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        quality: Optional[QualityCategory] = None,
        limit: int = 100,
        offset: int = 0,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReadingPage:
        """Raw reading history for one sensor, newest first.

        Readings with equal timestamps are listed latest write first.
        """
        _check_page(limit, offset)
        sensor = self.registry.require(sensor_id)
        start = ensure_utc(start) if start is not None else None
        end = ensure_utc(end) if end is not None else None
        if start is not None and end is not None and start > end:
            raise ValidationError("Query window start must not be after its end.")

        deadline = self._deadline(timeout, cancel_event)
        readings = self.store.scan(
            start=start, end=end, sensor_ids=[sensor.sensor_id], checkpoint=deadline.check
        )
        if quality is not None:
            readings = [reading for reading in readings if reading.quality_category == quality]
        ordered = [
            reading
            for _, reading in sorted(
                enumerate(readings),
                key=lambda item: (item[1].timestamp, item[0]),
                reverse=True,
            )
        ]
        return ReadingPage(items=ordered[offset : offset + limit], total=len(ordered))

    def list_sensors(
        self,
        status: Optional[SensorStatus] = None,
        region: Optional[str] = None,
        online: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SensorPage:
        """Registered sensors with computed health and their latest reading.

        ``online=False`` gives the offline view: sensors that are not active
        or whose heartbeat is stale.
        """
        _check_page(limit, offset)
        now = self._clock()
        overviews = [
            SensorOverview(sensor=sensor, health=sensor_health(sensor, now))
            for sensor in self.registry.list_sensors()
            if (status is None or sensor.status == status)
            and (region is None or sensor.region == region)
        ]
        if online is not None:
            overviews = [item for item in overviews if item.health.online is online]

        page = overviews[offset : offset + limit]
        if page:
            latest = {
                reading.sensor_id: reading
                for reading in self.query_latest(
                    [item.sensor.sensor_id for item in page],
                    timeout=timeout,
                    cancel_event=cancel_event,
                )
            }
            for item in page:
                item.latest = latest.get(item.sensor.sensor_id)
        return SensorPage(items=page, total=len(overviews))

    def sensor_health(self, sensor_id: str) -> SensorHealth:
        return sensor_health(self.registry.require(sensor_id), self._clock())


@lru_cache
def build_default_analytics() -> AnalyticsService:
    return AnalyticsService(
        store=build_default_store(),
        registry=build_default_registry(),
        default_timeout=get_settings().query_timeout_seconds,
    )
