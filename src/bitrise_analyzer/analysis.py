"""Workflow and repository analysis plus the end-to-end processing pipeline.

Groupings use ``"Unknown"`` for records without a workflow name or
repository title, so such records are grouped together rather than dropped.
Every ranking breaks ties by name so reports are reproducible.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .config import AnalysisConfig, Period, Thresholds
from .models import (
    BuildRecord,
    BuildStatistics,
    ProcessedData,
    RepositoryAnalysis,
    WorkflowAnalysis,
)
from .stats import StatisticsCalculator, calculate_mean, count_status
from .timeutils import extract_durations, filter_by_period
from .validation import BuildValidator

logger = logging.getLogger(__name__)

Metric = TypeVar("Metric", int, float)


def group_builds(
    records: Sequence[BuildRecord], key: Callable[[BuildRecord], str]
) -> Dict[str, List[BuildRecord]]:
    """Group records by ``key``, preserving first-seen group order."""
    groups: Dict[str, List[BuildRecord]] = {}
    for record in records:
        groups.setdefault(key(record), []).append(record)
    return groups


def rank(items: Sequence[Tuple[str, Metric]], limit: int) -> List[Tuple[str, Metric]]:
    """Sort ``(name, metric)`` pairs by metric descending, then name, and truncate."""
    ordered = sorted(items, key=lambda item: (-item[1], item[0]))
    return ordered[:limit]


def failure_rate(records: Sequence[BuildRecord]) -> float:
    if not records:
        return 0.0
    return count_status(records, "error") / len(records) * 100


def top_workflows_by_count(
    groups: Dict[str, List[BuildRecord]], limit: int
) -> List[Tuple[str, int]]:
    return rank([(name, len(builds)) for name, builds in groups.items()], limit)


def high_failure_workflows(
    groups: Dict[str, List[BuildRecord]], thresholds: Thresholds
) -> List[Tuple[str, float]]:
    """Workflows with enough executions whose error rate reaches the threshold."""
    candidates: List[Tuple[str, float]] = []
    for name, builds in groups.items():
        if len(builds) < thresholds.min_workflow_executions:
            continue
        rate = failure_rate(builds)
        if rate >= thresholds.min_failure_rate:
            candidates.append((name, rate))
    return rank(candidates, thresholds.top_workflow_count)


class WorkflowAnalyzer:
    """Derives workflow leaderboards from a validated record set."""

    def __init__(self, thresholds: Optional[Thresholds] = None) -> None:
        self._thresholds = thresholds or Thresholds()

    def analyze(self, records: Sequence[BuildRecord]) -> WorkflowAnalysis:
        groups = group_builds(records, lambda record: record.workflow_name)
        limit = self._thresholds.top_workflow_count

        return WorkflowAnalysis(
            top_workflows=top_workflows_by_count(groups, limit),
            long_running_workflows=self._long_running(groups, limit),
            high_failure_workflows=high_failure_workflows(groups, self._thresholds),
        )

    def _long_running(
        self, groups: Dict[str, List[BuildRecord]], limit: int
    ) -> List[Tuple[str, float]]:
        # Groups without any usable duration average to 0 and are left out.
        averages: List[Tuple[str, float]] = []
        for name, builds in groups.items():
            average = calculate_mean(extract_durations(builds))
            if average > 0:
                averages.append((name, average))
        return rank(averages, limit)


class RepositoryAnalyzer:
    """Computes per-repository statistics for each configured period."""

    def __init__(
        self,
        thresholds: Optional[Thresholds] = None,
        statistics_calculator: Optional[StatisticsCalculator] = None,
    ) -> None:
        self._thresholds = thresholds or Thresholds()
        self._calculator = statistics_calculator or StatisticsCalculator(self._thresholds)

    def analyze(
        self,
        records: Sequence[BuildRecord],
        periods: Sequence[Period],
        now: Optional[datetime] = None,
    ) -> RepositoryAnalysis:
        """Build a ``RepositoryAnalysis`` ordered by repository name.

        A repository only gets an entry for periods in which it has builds,
        and is omitted entirely when it has none in any period.
        """
        groups = group_builds(records, lambda record: record.repository_name)

        repository_stats: Dict[str, Dict[str, BuildStatistics]] = {}
        repository_workflows: Dict[str, List[str]] = {}
        repository_failures: Dict[str, List[str]] = {}

        for repository in sorted(groups):
            builds = groups[repository]
            period_stats: Dict[str, BuildStatistics] = {}
            for period in periods:
                selected = filter_by_period(builds, period, now=now)
                if selected:
                    period_stats[period.name] = self._calculator.calculate(selected, period.name)

            if not period_stats:
                continue

            workflow_groups = group_builds(builds, lambda record: record.workflow_name)
            repository_stats[repository] = period_stats
            repository_workflows[repository] = [
                f"{name}({count})"
                for name, count in top_workflows_by_count(
                    workflow_groups, self._thresholds.top_workflow_count
                )
            ]
            repository_failures[repository] = [
                f"{name}({rate:.1f}%)"
                for name, rate in high_failure_workflows(workflow_groups, self._thresholds)
            ]

        logger.info(
            "Analyzed repositories",
            extra={"repositories_total": len(groups), "repositories_reported": len(repository_stats)},
        )

        return RepositoryAnalysis(
            repository_stats=repository_stats,
            repository_workflows=repository_workflows,
            repository_failures=repository_failures,
        )


class DataProcessor:
    """Runs validation, per-period statistics and both analyzers.

    Collaborators default to the concrete implementations in this package and
    can be replaced by any object exposing the same method.
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        validator: Optional[BuildValidator] = None,
        statistics_calculator: Optional[StatisticsCalculator] = None,
        workflow_analyzer: Optional[WorkflowAnalyzer] = None,
        repository_analyzer: Optional[RepositoryAnalyzer] = None,
    ) -> None:
        self._config = config or AnalysisConfig()
        thresholds = self._config.thresholds
        self._validator = validator or BuildValidator(thresholds)
        self._calculator = statistics_calculator or StatisticsCalculator(thresholds)
        self._workflow_analyzer = workflow_analyzer or WorkflowAnalyzer(thresholds)
        self._repository_analyzer = repository_analyzer or RepositoryAnalyzer(
            thresholds, self._calculator
        )

    def process(self, records: Sequence[BuildRecord], now: Optional[datetime] = None) -> ProcessedData:
        """Validate ``records`` and compute every aggregate the reports need.

        Periods without any build are left out of the statistics map. Every
        period window, overall and per repository, is anchored at the same
        ``now``.

        Raises:
            DataValidationError: If more than half of ``records`` are invalid.
            DateCalculationError: If a period window cannot be computed.
        """
        now = now or datetime.now(timezone.utc)
        builds = self._validator.validate(records)

        statistics: Dict[str, BuildStatistics] = {}
        for period in self._config.periods:
            selected = filter_by_period(builds, period, now=now)
            if selected:
                statistics[period.name] = self._calculator.calculate(selected, period.name)

        workflow_analysis = self._workflow_analyzer.analyze(builds)
        repository_analysis = self._repository_analyzer.analyze(
            builds, self._config.periods, now=now
        )

        logger.info(
            "Processed build records",
            extra={
                "builds_total": len(records),
                "builds_valid": len(builds),
                "periods_reported": len(statistics),
            },
        )

        return ProcessedData(
            builds=builds,
            statistics=statistics,
            workflow_analysis=workflow_analysis,
            repository_analysis=repository_analysis,
        )
