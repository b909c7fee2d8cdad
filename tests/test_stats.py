"""Tests for statistical calculations and duration formatting."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bitrise_analyzer.config import Thresholds
from bitrise_analyzer.errors import CalculationError
from bitrise_analyzer.models import BuildRecord
from bitrise_analyzer.stats import (
    StatisticsCalculator,
    calculate_median,
    calculate_percentile,
    calculate_standard_deviation,
    format_duration,
)


def _build(
    status: str = "success",
    minutes: int | None = 1,
    cost: int | None = None,
) -> BuildRecord:
    finished = None
    if minutes is not None:
        finished = f"2024-03-01T10:{minutes:02d}:00Z"
    return BuildRecord(
        triggered_at="2024-03-01T10:00:00Z",
        finished_at=finished,
        status_text=status,
        credit_cost=cost,
    )


def test_calculate_percentile_nearest_rank_on_one_to_ten():
    """Verify nearest-rank percentiles pick actual samples, clamping P99 to the last value."""
    values = [float(value) for value in range(1, 11)]

    assert calculate_percentile(values, 50) == 5.0
    assert calculate_percentile(values, 90) == 9.0
    assert calculate_percentile(values, 99) == 10.0


def test_calculate_percentile_zero_clamps_to_first_value():
    """Verify the zeroth percentile clamps to the smallest sample instead of index -1."""
    assert calculate_percentile([3.0, 4.0, 5.0], 0) == 3.0


def test_calculate_percentile_empty_returns_zero():
    """Verify percentile calculation returns 0 when the sample list is empty."""
    assert calculate_percentile([], 50) == 0.0


def test_calculate_percentile_rejects_out_of_range_percentile():
    """Verify percentiles outside [0, 100] raise ValueError."""
    with pytest.raises(ValueError):
        calculate_percentile([1.0], 101)


def test_calculate_median_odd_even_and_empty():
    """Verify median uses the middle value for odd counts and the middle-pair mean for even counts."""
    assert calculate_median([5.0, 1.0, 3.0, 2.0, 4.0]) == 3.0
    assert calculate_median([4.0, 1.0, 3.0, 2.0]) == 2.5
    assert calculate_median([]) == 0.0


def test_calculate_standard_deviation_is_population_stddev():
    """Verify standard deviation divides by the sample count, not count - 1."""
    values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]

    assert calculate_standard_deviation(values) == pytest.approx(2.0)
    assert calculate_standard_deviation([]) == 0.0


def test_format_duration_handles_none_seconds_minutes_and_hours():
    """Verify duration formatter omits zero leading units and truncates fractions."""
    assert format_duration(None) == "n/a"
    assert format_duration(0) == "0s"
    assert format_duration(59.9) == "59s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(3600) == "1h 0m 0s"
    assert format_duration(3661) == "1h 1m 1s"


def test_calculate_empty_records_raises_calculation_error():
    """Verify statistics cannot be computed for an empty record set."""
    with pytest.raises(CalculationError):
        StatisticsCalculator().calculate([], "7 days")


def test_calculate_success_rate_and_status_counts():
    """Verify status buckets and success rate for 2 success, 1 error and 1 aborted build."""
    builds = [_build("success"), _build("success"), _build("error"), _build("aborted")]

    stats = StatisticsCalculator().calculate(builds, "30 days")

    assert stats.period == "30 days"
    assert stats.total_builds == 4
    assert stats.success_count == 2
    assert stats.error_count == 1
    assert stats.aborted_count == 1
    assert stats.success_rate == pytest.approx(50.0, abs=0.1)


def test_calculate_unrecognized_status_counts_only_in_total():
    """Verify unknown statuses are part of the total but of no status bucket."""
    builds = [_build("success"), _build("on-hold")]

    stats = StatisticsCalculator().calculate(builds, "all time")

    assert stats.total_builds == 2
    assert stats.success_count + stats.error_count + stats.aborted_count == 1
    assert stats.success_rate == pytest.approx(50.0)


def test_calculate_duration_statistics():
    """Verify mean, median, extremes, percentiles and stddev over available durations."""
    builds = [_build(minutes=1), _build(minutes=2), _build(minutes=3), _build(minutes=4), _build(minutes=None)]

    stats = StatisticsCalculator().calculate(builds, "all time")

    assert stats.total_builds == 5
    assert stats.average_duration == pytest.approx(150.0)
    assert stats.median_duration == pytest.approx(150.0)
    assert stats.min_duration == 60.0
    assert stats.max_duration == 240.0
    assert stats.p50_duration == 120.0
    assert stats.p75_duration == 180.0
    assert stats.p90_duration == 240.0
    assert stats.p95_duration == 240.0
    assert stats.p99_duration == 240.0
    assert stats.standard_deviation == pytest.approx(67.0820, abs=1e-3)


def test_calculate_without_any_duration_reports_zero_durations():
    """Verify duration figures default to 0 when no build has a finish timestamp."""
    stats = StatisticsCalculator().calculate([_build(minutes=None)], "all time")

    assert stats.average_duration == 0.0
    assert stats.median_duration == 0.0
    assert stats.max_duration == 0.0
    assert stats.p99_duration == 0.0
    assert stats.standard_deviation == 0.0


def test_calculate_ignores_durations_above_max_threshold():
    """Verify durations longer than the configured maximum are left out of duration figures."""
    long_build = BuildRecord(
        triggered_at="2024-03-01T10:00:00Z",
        finished_at="2024-03-01T12:00:00Z",
        status_text="success",
    )
    calculator = StatisticsCalculator(Thresholds(max_duration_hours=1))

    stats = calculator.calculate([long_build, _build(minutes=10)], "all time")

    assert stats.total_builds == 2
    assert stats.max_duration == 600.0
    assert stats.average_duration == 600.0


def test_calculate_credit_cost_excludes_missing_costs_from_average():
    """Verify builds without a credit cost are left out of both total and average."""
    builds = [_build(cost=10), _build(cost=20), _build(cost=None)]

    stats = StatisticsCalculator().calculate(builds, "all time")

    assert stats.total_credit_cost == 30
    assert stats.average_credit_cost == pytest.approx(15.0)


def test_calculate_percentiles_are_monotonic():
    """Verify P50 <= P75 <= P90 <= P95 <= P99 <= max and min <= median <= max."""
    builds = [_build(minutes=minutes) for minutes in (7, 1, 30, 2, 2, 45, 13, 9, 5, 58, 3)]

    stats = StatisticsCalculator().calculate(builds, "all time")

    assert (
        stats.p50_duration
        <= stats.p75_duration
        <= stats.p90_duration
        <= stats.p95_duration
        <= stats.p99_duration
        <= stats.max_duration
    )
    assert stats.min_duration <= stats.median_duration <= stats.max_duration
