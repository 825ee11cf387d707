"""Unit tests for quality scoring."""

from __future__ import annotations

import pytest

from models.records import DeviceMetadata, FlagSeverity, QualityCategory, QualityFlagKind
from services.quality import category_for_score, score_quality


def test_normal_reading_scores_perfectly() -> None:
    assessment = score_quality({"temperature": 40.0, "humidity": 50.0})

    assert assessment.score == 100
    assert assessment.category == QualityCategory.excellent
    assert assessment.flags == []


def test_missing_critical_parameters_produce_single_flag() -> None:
    assessment = score_quality({})

    assert assessment.score == 60
    assert assessment.category == QualityCategory.fair
    assert len(assessment.flags) == 1
    flag = assessment.flags[0]
    assert flag.kind == QualityFlagKind.missing_data
    assert flag.severity == FlagSeverity.high
    assert "temperature, humidity" in flag.description


def test_low_battery_costs_five_points() -> None:
    assessment = score_quality(
        {"temperature": 21.0, "humidity": 40.0},
        DeviceMetadata(battery_level=15),
    )

    assert assessment.score == 95
    assert assessment.category == QualityCategory.excellent
    assert [flag.kind for flag in assessment.flags] == [QualityFlagKind.sensor_error]
    assert assessment.flags[0].severity == FlagSeverity.low


def test_deductions_accumulate_in_rule_order() -> None:
    assessment = score_quality(
        {"temperature": 75.0, "humidity": 120.0},
        DeviceMetadata(battery_level=5, signal_strength=-100),
    )

    assert assessment.score == 100 - 15 - 15 - 5 - 10
    assert assessment.category == QualityCategory.fair
    assert [flag.kind for flag in assessment.flags] == [
        QualityFlagKind.outlier,
        QualityFlagKind.outlier,
        QualityFlagKind.sensor_error,
        QualityFlagKind.network_issue,
    ]


def test_range_bounds_are_inclusive() -> None:
    assessment = score_quality({"temperature": -40.0, "humidity": 100.0})

    assert assessment.score == 100


def test_missing_and_outlier_rules_combine() -> None:
    assessment = score_quality(
        {"humidity": -5.0},
        DeviceMetadata(battery_level=0, signal_strength=-120),
    )

    assert assessment.score == 100 - 20 - 15 - 5 - 10
    assert 0 <= assessment.score <= 100
    assert assessment.category == QualityCategory.fair


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (100, QualityCategory.excellent),
        (90, QualityCategory.excellent),
        (89, QualityCategory.good),
        (75, QualityCategory.good),
        (74, QualityCategory.fair),
        (50, QualityCategory.fair),
        (49, QualityCategory.poor),
        (25, QualityCategory.poor),
        (24, QualityCategory.invalid),
        (0, QualityCategory.invalid),
    ],
)
def test_category_boundaries(score: int, expected: QualityCategory) -> None:
    assert category_for_score(score) == expected
