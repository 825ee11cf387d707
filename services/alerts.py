"""Threshold-breach alert derivation."""

from __future__ import annotations

from typing import List, Mapping, Optional, Tuple

from models.records import AlertFact, AlertLevel, ThresholdBand

_Breach = Tuple[float, AlertLevel]


def _breach_above(value: float, band: ThresholdBand) -> Optional[_Breach]:
    for bound, level in (
        (band.critical_max, AlertLevel.critical),
        (band.warning_max, AlertLevel.warning),
    ):
        if bound is not None and value > bound:
            return bound, level
    return None


def _breach_below(value: float, band: ThresholdBand) -> Optional[_Breach]:
    for bound, level in (
        (band.critical_min, AlertLevel.critical),
        (band.warning_min, AlertLevel.warning),
    ):
        if bound is not None and value < bound:
            return bound, level
    return None


def derive_alerts(
    measurements: Mapping[str, float],
    profile: Mapping[str, ThresholdBand],
) -> List[AlertFact]:
    """Return one alert per measured parameter that breaches its profile.

    Parameters are visited in measurement order. The critical bound is checked
    before the warning bound so that the most severe breach is the one
    recorded. Nothing is remembered between calls: a parameter that stays out
    of range produces an alert on every reading.
    """
    alerts: List[AlertFact] = []
    for parameter, value in measurements.items():
        band = profile.get(parameter)
        if band is None or value is None:
            continue

        suffix = "high"
        breach = _breach_above(value, band)
        if breach is None:
            suffix = "low"
            breach = _breach_below(value, band)
        if breach is None:
            continue

        threshold, level = breach
        alerts.append(
            AlertFact(
                type=f"{parameter}_{suffix}",
                measured_value=value,
                threshold_value=threshold,
                level=level,
            )
        )
    return alerts
