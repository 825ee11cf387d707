"""Shared alert-type to severity-tier lookup."""

from __future__ import annotations

from typing import FrozenSet, List, Tuple

from models.records import AlertEvent, Reading, SeverityTier

# Evaluated top to bottom; listings, trends, rollups and pushed events all
# classify through this table.
SEVERITY_TABLE: Tuple[Tuple[FrozenSet[str], SeverityTier], ...] = (
    (frozenset({"temperature_critical", "air_quality_hazardous"}), SeverityTier.high),
    (
        frozenset({"temperature_high", "air_quality_poor", "sensor_offline"}),
        SeverityTier.medium,
    ),
    (frozenset({"humidity_high", "battery_low"}), SeverityTier.low),
)

DEFAULT_SEVERITY = SeverityTier.medium


def classify_severity(alert_type: str) -> SeverityTier:
    for alert_types, tier in SEVERITY_TABLE:
        if alert_type in alert_types:
            return tier
    return DEFAULT_SEVERITY


def empty_breakdown() -> dict[str, int]:
    """Zeroed per-tier counters, ordered high to low."""
    return {tier.value: 0 for tier in SeverityTier}


def materialize_alerts(reading: Reading) -> List[AlertEvent]:
    """Expand a reading's alert facts into classified events."""
    return [
        AlertEvent(
            reading_id=reading.reading_id,
            alert_index=index,
            sensor_id=reading.sensor_id,
            timestamp=reading.timestamp,
            alert=alert,
            severity=classify_severity(alert.type),
        )
        for index, alert in enumerate(reading.alerts)
    ]
