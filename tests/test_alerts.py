"""Unit tests for threshold-breach alert derivation."""

from __future__ import annotations

from models.records import AlertLevel, ThresholdBand
from services.alerts import derive_alerts


def test_breach_above_warning_max() -> None:
    alerts = derive_alerts(
        {"temperature": 40.0, "humidity": 50.0},
        {"temperature": ThresholdBand(warning_max=35)},
    )

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.type == "temperature_high"
    assert alert.measured_value == 40.0
    assert alert.threshold_value == 35.0
    assert alert.level == AlertLevel.warning


def test_breach_below_warning_min() -> None:
    alerts = derive_alerts({"humidity": 10.0}, {"humidity": ThresholdBand(warning_min=20)})

    assert [(a.type, a.threshold_value) for a in alerts] == [("humidity_low", 20.0)]


def test_critical_bound_wins_over_warning() -> None:
    band = ThresholdBand(warning_max=30, critical_max=45, warning_min=5, critical_min=-10)

    high = derive_alerts({"temperature": 50.0}, {"temperature": band})
    low = derive_alerts({"temperature": -20.0}, {"temperature": band})

    assert high[0].level == AlertLevel.critical
    assert high[0].threshold_value == 45.0
    assert low[0].type == "temperature_low"
    assert low[0].level == AlertLevel.critical
    assert low[0].threshold_value == -10.0


def test_values_on_the_bound_do_not_alert() -> None:
    band = ThresholdBand(warning_min=10, warning_max=20)

    assert derive_alerts({"co2": 10.0}, {"co2": band}) == []
    assert derive_alerts({"co2": 20.0}, {"co2": band}) == []


def test_parameters_without_a_band_are_ignored() -> None:
    alerts = derive_alerts(
        {"temperature": 99.0, "noise": 120.0},
        {"noise": ThresholdBand(warning_max=85)},
    )

    assert [alert.type for alert in alerts] == ["noise_high"]


def test_alerts_follow_measurement_order_and_repeat() -> None:
    profile = {
        "pm10": ThresholdBand(warning_max=50),
        "co2": ThresholdBand(warning_max=1000),
    }
    measurements = {"co2": 1500.0, "pm10": 80.0}

    first = derive_alerts(measurements, profile)
    second = derive_alerts(measurements, profile)

    assert [alert.type for alert in first] == ["co2_high", "pm10_high"]
    assert first == second


def test_empty_profile_yields_no_alerts() -> None:
    assert derive_alerts({"temperature": 100.0}, {}) == []
