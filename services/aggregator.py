"""Time-bucketed aggregation over sensor readings."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from models.records import (
    ANALYTICS_CATEGORIES,
    AlertEvent,
    Granularity,
    Reading,
    SeverityTier,
    ensure_utc,
    normalize_sensor_id,
)
from services.errors import InvalidGranularity, QueryCancelled, QueryTimeout, ValidationError
from services.severity import empty_breakdown, materialize_alerts

UNKNOWN_REGION = "unknown"


class RollupDimension(str, Enum):
    region = "region"
    sensor = "sensor"


def parse_granularity(value: str | Granularity) -> Granularity:
    if isinstance(value, Granularity):
        return value
    try:
        return Granularity(value.strip().lower())
    except (AttributeError, ValueError) as exc:
        allowed = ", ".join(item.value for item in Granularity)
        raise InvalidGranularity(
            f"Invalid granularity {value!r}. Use one of: {allowed}."
        ) from exc


def parse_dimension(value: str | RollupDimension) -> RollupDimension:
    if isinstance(value, RollupDimension):
        return value
    try:
        return RollupDimension(value.strip().lower())
    except (AttributeError, ValueError) as exc:
        allowed = ", ".join(item.value for item in RollupDimension)
        raise ValidationError(
            f"Invalid rollup dimension {value!r}. Use one of: {allowed}."
        ) from exc


def truncate(timestamp: datetime, granularity: Granularity) -> datetime:
    """Truncate to the start of the enclosing calendar unit in UTC.

    Weeks start on Monday.
    """
    moment = timestamp.astimezone(timezone.utc)
    if granularity is Granularity.hour:
        return moment.replace(minute=0, second=0, microsecond=0)
    day_start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.day:
        return day_start
    if granularity is Granularity.week:
        return day_start - timedelta(days=day_start.weekday())
    if granularity is Granularity.month:
        return day_start.replace(day=1)
    raise InvalidGranularity(f"Unsupported granularity {granularity!r}.")


class QueryDeadline:
    """Time budget and cancellation token checked while a query scans."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = clock() + timeout if timeout is not None else None
        self._cancel_event = cancel_event

    def check(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise QueryCancelled("Query cancelled by caller.")
        if self._expires_at is not None and self._clock() > self._expires_at:
            raise QueryTimeout("Query exceeded its time budget.")


@dataclass
class ParameterStats:
    count: int = 0
    total: float = 0.0
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    @property
    def avg(self) -> Optional[float]:
        return self.total / self.count if self.count else None

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        if self.min_value is None or value < self.min_value:
            self.min_value = value
        if self.max_value is None or value > self.max_value:
            self.max_value = value


@dataclass
class SeriesBucket:
    bucket_start: datetime
    count: int = 0
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    parameters: Dict[str, ParameterStats] = field(default_factory=dict)


@dataclass
class AlertTrendBucket:
    bucket_start: datetime
    count: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


@dataclass
class RollupEntry:
    key: str
    count: int = 0
    breakdown: Dict[str, int] = field(default_factory=empty_breakdown)
    sensor_count: int = 0
    alert_types: List[str] = field(default_factory=list)
    last_alert: Optional[datetime] = None


@dataclass
class AlertSummary:
    total: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)


def _tally(target: AlertTrendBucket | AlertSummary, tier: SeverityTier) -> None:
    setattr(target, tier.value, getattr(target, tier.value) + 1)


def _check_window(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """Return the window in UTC; naive bounds are read as UTC."""
    start, end = ensure_utc(start), ensure_utc(end)
    if start > end:
        raise ValidationError("Query window start must not be after its end.")
    return start, end


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation.

    Every method takes readings in store insertion order and never mutates
    them. ``deadline`` is checked once per reading.
    """

    def series(
        self,
        readings: Iterable[Reading],
        start: datetime,
        end: datetime,
        granularity: Granularity,
        deadline: Optional[QueryDeadline] = None,
    ) -> List[SeriesBucket]:
        start, end = _check_window(start, end)
        buckets: Dict[datetime, SeriesBucket] = {}

        for reading in readings:
            if deadline is not None:
                deadline.check()
            if not start <= reading.timestamp < end:
                continue
            if reading.quality_category not in ANALYTICS_CATEGORIES:
                continue

            key = truncate(reading.timestamp, granularity)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = SeriesBucket(bucket_start=key)

            bucket.count += 1
            if bucket.first_timestamp is None or reading.timestamp < bucket.first_timestamp:
                bucket.first_timestamp = reading.timestamp
            if bucket.last_timestamp is None or reading.timestamp > bucket.last_timestamp:
                bucket.last_timestamp = reading.timestamp

            for parameter, value in reading.all_measurements().items():
                bucket.parameters.setdefault(parameter, ParameterStats()).add(value)

        return [buckets[key] for key in sorted(buckets)]

    def latest(
        self,
        readings: Iterable[Reading],
        sensor_ids: Optional[Sequence[str]] = None,
        deadline: Optional[QueryDeadline] = None,
    ) -> List[Reading]:
        wanted = (
            {normalize_sensor_id(sensor_id) for sensor_id in sensor_ids}
            if sensor_ids is not None
            else None
        )
        newest: Dict[str, Reading] = {}

        for reading in readings:
            if deadline is not None:
                deadline.check()
            if wanted is not None and reading.sensor_id not in wanted:
                continue
            current = newest.get(reading.sensor_id)
            # ">=" lets the later write win when timestamps collide.
            if current is None or reading.timestamp >= current.timestamp:
                newest[reading.sensor_id] = reading

        return [newest[sensor_id] for sensor_id in sorted(newest)]

    def alert_events(
        self,
        readings: Iterable[Reading],
        start: datetime,
        end: datetime,
        deadline: Optional[QueryDeadline] = None,
    ) -> List[AlertEvent]:
        """Materialize alert facts in the window, newest first."""
        start, end = _check_window(start, end)
        ranked: List[Tuple[datetime, int, AlertEvent]] = []

        for position, reading in enumerate(readings):
            if deadline is not None:
                deadline.check()
            if not reading.alerts or not start <= reading.timestamp < end:
                continue
            for event in materialize_alerts(reading):
                ranked.append((reading.timestamp, position, event))

        ranked.sort(key=lambda item: (item[0], item[1], -item[2].alert_index), reverse=True)
        return [event for _, _, event in ranked]

    def alert_trend(
        self,
        readings: Iterable[Reading],
        start: datetime,
        end: datetime,
        granularity: Granularity,
        deadline: Optional[QueryDeadline] = None,
    ) -> List[AlertTrendBucket]:
        buckets: Dict[datetime, AlertTrendBucket] = {}

        for event in self.alert_events(readings, start, end, deadline=deadline):
            key = truncate(event.timestamp, granularity)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = AlertTrendBucket(bucket_start=key)
            bucket.count += 1
            _tally(bucket, event.severity)

        return [buckets[key] for key in sorted(buckets)]

    def alert_summary(
        self,
        readings: Iterable[Reading],
        start: datetime,
        end: datetime,
        deadline: Optional[QueryDeadline] = None,
    ) -> AlertSummary:
        summary = AlertSummary()
        for event in self.alert_events(readings, start, end, deadline=deadline):
            summary.total += 1
            _tally(summary, event.severity)
            summary.by_type[event.alert.type] = summary.by_type.get(event.alert.type, 0) + 1
        summary.by_type = dict(sorted(summary.by_type.items()))
        return summary

    def rollup(
        self,
        readings: Iterable[Reading],
        dimension: RollupDimension,
        start: datetime,
        end: datetime,
        resolve_region: Callable[[str], Optional[str]] = lambda _sensor_id: None,
        limit: Optional[int] = None,
        deadline: Optional[QueryDeadline] = None,
    ) -> List[RollupEntry]:
        """Group alert facts by region or sensor.

        Entries are ordered by alert count descending, then key ascending.
        """
        entries: Dict[str, RollupEntry] = {}
        sensors: Dict[str, set[str]] = {}
        types: Dict[str, set[str]] = {}
        regions: Dict[str, str] = {}

        for event in self.alert_events(readings, start, end, deadline=deadline):
            if dimension is RollupDimension.sensor:
                key = event.sensor_id
            else:
                if event.sensor_id not in regions:
                    regions[event.sensor_id] = resolve_region(event.sensor_id) or UNKNOWN_REGION
                key = regions[event.sensor_id]

            entry = entries.get(key)
            if entry is None:
                entry = entries[key] = RollupEntry(key=key)
            entry.count += 1
            entry.breakdown[event.severity.value] += 1
            if entry.last_alert is None or event.timestamp > entry.last_alert:
                entry.last_alert = event.timestamp
            sensors.setdefault(key, set()).add(event.sensor_id)
            types.setdefault(key, set()).add(event.alert.type)

        for key, entry in entries.items():
            entry.sensor_count = len(sensors[key])
            entry.alert_types = sorted(types[key])

        ordered = sorted(entries.values(), key=lambda entry: (-entry.count, entry.key))
        if limit is not None:
            ordered = ordered[: max(limit, 0)]
        return ordered
