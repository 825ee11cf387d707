"""Computed liveness and maintenance status for registered sensors."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from models.records import MaintenanceStatus, Sensor, SensorStatus

HEARTBEAT_GRACE_MULTIPLIER = 2
DUE_SOON_DAYS = 7
UPCOMING_DAYS = 30
_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class SensorHealth:
    sensor_id: str
    online: bool
    maintenance: MaintenanceStatus
    seconds_since_heartbeat: Optional[float]


def is_online(sensor: Sensor, now: datetime) -> bool:
    if sensor.status != SensorStatus.active or sensor.last_heartbeat is None:
        return False
    grace = timedelta(seconds=sensor.heartbeat_interval * HEARTBEAT_GRACE_MULTIPLIER)
    return now - sensor.last_heartbeat <= grace


def maintenance_status(sensor: Sensor, now: datetime) -> MaintenanceStatus:
    if sensor.next_maintenance is None:
        return MaintenanceStatus.unknown

    days_until = math.ceil((sensor.next_maintenance - now).total_seconds() / _SECONDS_PER_DAY)
    if days_until < 0:
        return MaintenanceStatus.overdue
    if days_until <= DUE_SOON_DAYS:
        return MaintenanceStatus.due_soon
    if days_until <= UPCOMING_DAYS:
        return MaintenanceStatus.upcoming
    return MaintenanceStatus.scheduled


def sensor_health(sensor: Sensor, now: datetime) -> SensorHealth:
    since: Optional[float] = None
    if sensor.last_heartbeat is not None:
        since = (now - sensor.last_heartbeat).total_seconds()
    return SensorHealth(
        sensor_id=sensor.sensor_id,
        online=is_online(sensor, now),
        maintenance=maintenance_status(sensor, now),
        seconds_since_heartbeat=since,
    )
