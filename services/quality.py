"""Data-quality scoring for incoming measurements."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from models.records import (
    DeviceMetadata,
    FlagSeverity,
    QualityCategory,
    QualityFlag,
    QualityFlagKind,
)

CRITICAL_PARAMETERS = ("temperature", "humidity")

MISSING_PARAMETER_PENALTY = 20
TEMPERATURE_RANGE = (-40.0, 60.0)
TEMPERATURE_PENALTY = 15
HUMIDITY_RANGE = (0.0, 100.0)
HUMIDITY_PENALTY = 15
LOW_BATTERY_LEVEL = 20.0
LOW_BATTERY_PENALTY = 5
WEAK_SIGNAL_DBM = -90.0
WEAK_SIGNAL_PENALTY = 10

# Descending; the first floor the score reaches decides the category.
CATEGORY_FLOORS = (
    (90, QualityCategory.excellent),
    (75, QualityCategory.good),
    (50, QualityCategory.fair),
    (25, QualityCategory.poor),
)


@dataclass(frozen=True)
class QualityAssessment:
    score: int
    category: QualityCategory
    flags: List[QualityFlag] = field(default_factory=list)


def category_for_score(score: int) -> QualityCategory:
    for floor, category in CATEGORY_FLOORS:
        if score >= floor:
            return category
    return QualityCategory.invalid


def _outside(value: float, bounds: tuple[float, float]) -> bool:
    low, high = bounds
    return value < low or value > high


def score_quality(
    measurements: Mapping[str, float],
    device_metadata: Optional[DeviceMetadata] = None,
) -> QualityAssessment:
    """Score a measurement from 0 to 100 and classify it.

    Every rule is evaluated independently and deductions add up; the final
    score is clamped to ``[0, 100]`` before the category is looked up.
    """
    metadata = device_metadata or DeviceMetadata()
    score = 100
    flags: List[QualityFlag] = []

    missing = [name for name in CRITICAL_PARAMETERS if measurements.get(name) is None]
    if missing:
        score -= MISSING_PARAMETER_PENALTY * len(missing)
        flags.append(
            QualityFlag(
                kind=QualityFlagKind.missing_data,
                description=f"Missing critical parameters: {', '.join(missing)}",
                severity=FlagSeverity.high,
            )
        )

    temperature = measurements.get("temperature")
    if temperature is not None and _outside(temperature, TEMPERATURE_RANGE):
        score -= TEMPERATURE_PENALTY
        flags.append(
            QualityFlag(
                kind=QualityFlagKind.outlier,
                description="Temperature reading outside expected range",
                severity=FlagSeverity.medium,
            )
        )

    humidity = measurements.get("humidity")
    if humidity is not None and _outside(humidity, HUMIDITY_RANGE):
        score -= HUMIDITY_PENALTY
        flags.append(
            QualityFlag(
                kind=QualityFlagKind.outlier,
                description="Humidity reading outside valid range",
                severity=FlagSeverity.high,
            )
        )

    if metadata.battery_level is not None and metadata.battery_level < LOW_BATTERY_LEVEL:
        score -= LOW_BATTERY_PENALTY
        flags.append(
            QualityFlag(
                kind=QualityFlagKind.sensor_error,
                description="Low battery level may affect sensor accuracy",
                severity=FlagSeverity.low,
            )
        )

    if metadata.signal_strength is not None and metadata.signal_strength < WEAK_SIGNAL_DBM:
        score -= WEAK_SIGNAL_PENALTY
        flags.append(
            QualityFlag(
                kind=QualityFlagKind.network_issue,
                description="Poor signal strength may indicate data transmission issues",
                severity=FlagSeverity.medium,
            )
        )

    score = max(0, min(100, score))
    return QualityAssessment(score=score, category=category_for_score(score), flags=flags)
