"""Statistics and formatting helpers for build reporting.

This module provides utilities for:
- Computing nearest-rank percentiles from pre-sorted samples.
- Computing median and population standard deviation.
- Aggregating ``BuildStatistics`` for a record subset and period label.
- Formatting second-based durations for human-readable reports.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from .config import Thresholds
from .errors import CalculationError
from .models import BuildRecord, BuildStatistics
from .timeutils import extract_durations

logger = logging.getLogger(__name__)


def calculate_percentile(sorted_values: Sequence[float], p: float) -> float:
    """Calculate a percentile using the nearest-rank method.

    The input sequence is expected to already be sorted in ascending order.
    The selected element is at index ``ceil(n * p / 100) - 1``, clamped to
    the valid index range, so the result is always an actual sample.

    Args:
        sorted_values: Sorted numeric samples.
        p: Percentile in the inclusive range ``[0, 100]``.

    Returns:
        The percentile value, or ``0.0`` when input is empty.

    Raises:
        ValueError: If ``p`` is outside ``[0, 100]``.
    """
    if not 0 <= p <= 100:
        raise ValueError("Percentile 'p' must be in the range [0, 100].")

    if not sorted_values:
        return 0.0

    index = math.ceil(len(sorted_values) * p / 100.0) - 1
    index = min(max(index, 0), len(sorted_values) - 1)
    return float(sorted_values[index])


def calculate_median(values: Sequence[float]) -> float:
    """Return the median of ``values`` (mean of the middle pair for even counts)."""
    ordered = sorted(values)
    count = len(ordered)
    if count == 0:
        return 0.0
    middle = count // 2
    if count % 2 == 0:
        return (ordered[middle - 1] + ordered[middle]) / 2
    return float(ordered[middle])


def calculate_mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def calculate_standard_deviation(values: Sequence[float], mean: Optional[float] = None) -> float:
    """Return the population standard deviation of ``values``."""
    if not values:
        return 0.0
    center = calculate_mean(values) if mean is None else mean
    variance = sum((value - center) ** 2 for value in values) / len(values)
    return math.sqrt(variance)


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as ``"1h 2m 3s"``, ``"2m 3s"`` or ``"3s"``.

    Args:
        seconds: Duration in seconds.

    Returns:
        ``"n/a"`` when ``seconds`` is ``None``; otherwise the truncated
        duration with zero leading units omitted.
    """
    if seconds is None:
        return "n/a"

    total_seconds = int(seconds)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    remaining_seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m {remaining_seconds}s"
    if minutes > 0:
        return f"{minutes}m {remaining_seconds}s"
    return f"{remaining_seconds}s"


def count_status(records: Sequence[BuildRecord], status_text: str) -> int:
    return sum(1 for record in records if record.status_text == status_text)


class StatisticsCalculator:
    """Computes ``BuildStatistics`` for an already validated record subset."""

    def __init__(self, thresholds: Optional[Thresholds] = None) -> None:
        self._thresholds = thresholds or Thresholds()

    def calculate(self, records: Sequence[BuildRecord], period: str) -> BuildStatistics:
        """Aggregate counts, durations and credit cost for ``records``.

        Durations outside ``[0, max_duration_hours]`` or with missing
        timestamps are left out of every duration figure. Records without a
        credit cost are left out of both the cost total and its average.

        Raises:
            CalculationError: If ``records`` is empty.
        """
        if not records:
            raise CalculationError(f"No build data to calculate statistics for period '{period}'.")

        total_builds = len(records)
        success_count = count_status(records, "success")
        error_count = count_status(records, "error")
        aborted_count = count_status(records, "aborted")
        success_rate = success_count / total_builds * 100 if total_builds > 0 else 0.0

        durations: List[float] = sorted(
            extract_durations(records, max_seconds=self._thresholds.max_duration_seconds)
        )
        average_duration = calculate_mean(durations)

        credit_costs = [record.credit_cost for record in records if record.credit_cost is not None]
        total_credit_cost = sum(credit_costs)
        average_credit_cost = total_credit_cost / len(credit_costs) if credit_costs else 0.0

        statistics = BuildStatistics(
            period=period,
            total_builds=total_builds,
            success_count=success_count,
            error_count=error_count,
            aborted_count=aborted_count,
            success_rate=success_rate,
            average_duration=average_duration,
            median_duration=calculate_median(durations),
            min_duration=durations[0] if durations else 0.0,
            max_duration=durations[-1] if durations else 0.0,
            p50_duration=calculate_percentile(durations, 50),
            p75_duration=calculate_percentile(durations, 75),
            p90_duration=calculate_percentile(durations, 90),
            p95_duration=calculate_percentile(durations, 95),
            p99_duration=calculate_percentile(durations, 99),
            standard_deviation=calculate_standard_deviation(durations, mean=average_duration),
            total_credit_cost=total_credit_cost,
            average_credit_cost=average_credit_cost,
        )

        logger.debug(
            "Calculated build statistics",
            extra={
                "period": period,
                "builds_total": total_builds,
                "duration_samples": len(durations),
                "cost_samples": len(credit_costs),
            },
        )
        return statistics
