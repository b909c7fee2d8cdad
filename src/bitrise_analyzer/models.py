"""Domain models for Bitrise build analysis.

``BuildRecord`` mirrors the subset of the Bitrise ``/builds`` payload that the
analysis uses. Every field is optional because the API omits keys freely;
values of an unexpected type are treated as absent rather than rejected.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

KNOWN_STATUSES = ("success", "error", "aborted")
UNKNOWN_LABEL = "Unknown"


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


@dataclass(frozen=True)
class BuildRecord:
    """Represents one CI build execution reported by Bitrise."""

    triggered_at: Optional[str] = None
    finished_at: Optional[str] = None
    started_on_worker_at: Optional[str] = None
    environment_prepare_finished_at: Optional[str] = None
    status: Optional[int] = None
    status_text: Optional[str] = None
    triggered_workflow: Optional[str] = None
    triggered_by: Optional[str] = None
    repository_title: Optional[str] = None
    repository_slug: Optional[str] = None
    machine_type_id: Optional[str] = None
    stack_identifier: Optional[str] = None
    credit_cost: Optional[int] = None
    branch: Optional[str] = None
    build_number: Optional[int] = None
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    pull_request_id: Optional[int] = None
    slug: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BuildRecord":
        """Build a record from one item of the API ``data`` array."""
        repository = payload.get("repository")
        if not isinstance(repository, Mapping):
            repository = {}

        return cls(
            triggered_at=_optional_str(payload.get("triggered_at")),
            finished_at=_optional_str(payload.get("finished_at")),
            started_on_worker_at=_optional_str(payload.get("started_on_worker_at")),
            environment_prepare_finished_at=_optional_str(
                payload.get("environment_prepare_finished_at")
            ),
            status=_optional_int(payload.get("status")),
            status_text=_optional_str(payload.get("status_text")),
            triggered_workflow=_optional_str(payload.get("triggered_workflow")),
            triggered_by=_optional_str(payload.get("triggered_by")),
            repository_title=_optional_str(repository.get("title")),
            repository_slug=_optional_str(repository.get("slug")),
            machine_type_id=_optional_str(payload.get("machine_type_id")),
            stack_identifier=_optional_str(payload.get("stack_identifier")),
            credit_cost=_optional_int(payload.get("credit_cost")),
            branch=_optional_str(payload.get("branch")),
            build_number=_optional_int(payload.get("build_number")),
            commit_hash=_optional_str(payload.get("commit_hash")),
            commit_message=_optional_str(payload.get("commit_message")),
            pull_request_id=_optional_int(payload.get("pull_request_id")),
            slug=_optional_str(payload.get("slug")),
        )

    @property
    def workflow_name(self) -> str:
        return self.triggered_workflow or UNKNOWN_LABEL

    @property
    def repository_name(self) -> str:
        return self.repository_title or UNKNOWN_LABEL

    @property
    def machine_type(self) -> str:
        return self.machine_type_id or UNKNOWN_LABEL


@dataclass(frozen=True)
class BuildStatistics:
    """Aggregated build statistics for one record subset and period label.

    Durations are in seconds. Instances are never mutated after the
    statistics calculator creates them.
    """

    period: str
    total_builds: int
    success_count: int
    error_count: int
    aborted_count: int
    success_rate: float
    average_duration: float
    median_duration: float
    min_duration: float
    max_duration: float
    p50_duration: float
    p75_duration: float
    p90_duration: float
    p95_duration: float
    p99_duration: float
    standard_deviation: float
    total_credit_cost: int
    average_credit_cost: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BuildStatistics":
        return cls(
            period=str(payload["period"]),
            total_builds=int(payload["total_builds"]),
            success_count=int(payload["success_count"]),
            error_count=int(payload["error_count"]),
            aborted_count=int(payload["aborted_count"]),
            success_rate=float(payload["success_rate"]),
            average_duration=float(payload["average_duration"]),
            median_duration=float(payload["median_duration"]),
            min_duration=float(payload["min_duration"]),
            max_duration=float(payload["max_duration"]),
            p50_duration=float(payload["p50_duration"]),
            p75_duration=float(payload["p75_duration"]),
            p90_duration=float(payload["p90_duration"]),
            p95_duration=float(payload["p95_duration"]),
            p99_duration=float(payload["p99_duration"]),
            standard_deviation=float(payload["standard_deviation"]),
            total_credit_cost=int(payload["total_credit_cost"]),
            average_credit_cost=float(payload["average_credit_cost"]),
        )


@dataclass(frozen=True)
class WorkflowAnalysis:
    """Workflow leaderboards, each already truncated to the top-N threshold."""

    top_workflows: List[Tuple[str, int]] = field(default_factory=list)
    long_running_workflows: List[Tuple[str, float]] = field(default_factory=list)
    high_failure_workflows: List[Tuple[str, float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "top_workflows": [[name, count] for name, count in self.top_workflows],
            "long_running_workflows": [
                [name, duration] for name, duration in self.long_running_workflows
            ],
            "high_failure_workflows": [
                [name, rate] for name, rate in self.high_failure_workflows
            ],
        }


@dataclass(frozen=True)
class RepositoryAnalysis:
    """Per-repository statistics keyed by period label, plus display summaries.

    ``repository_workflows`` and ``repository_failures`` are pre-formatted as
    ``"name(count)"`` and ``"name(rate%)"`` strings for tabular output.
    """

    repository_stats: Dict[str, Dict[str, BuildStatistics]] = field(default_factory=dict)
    repository_workflows: Dict[str, List[str]] = field(default_factory=dict)
    repository_failures: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository_stats": {
                repository: {period: stats.to_dict() for period, stats in periods.items()}
                for repository, periods in self.repository_stats.items()
            },
            "repository_workflows": {
                repository: list(names) for repository, names in self.repository_workflows.items()
            },
            "repository_failures": {
                repository: list(names) for repository, names in self.repository_failures.items()
            },
        }


@dataclass(frozen=True)
class ProcessedData:
    """Everything the report generator needs, computed once by the processor."""

    builds: List[BuildRecord]
    statistics: Dict[str, BuildStatistics]
    workflow_analysis: WorkflowAnalysis
    repository_analysis: RepositoryAnalysis


class ReportKind(enum.Enum):
    """Kinds of aggregate input a report renderer can be asked to render."""

    PERIOD_STATISTICS = "period_statistics"
    REPOSITORY_ANALYSIS = "repository_analysis"
    WORKFLOW_ANALYSIS = "workflow_analysis"


@dataclass(frozen=True)
class WorkflowReportData:
    """Workflow leaderboards together with the builds they were derived from."""

    analysis: WorkflowAnalysis
    builds: List[BuildRecord]


ReportPayload = Union[Dict[str, BuildStatistics], RepositoryAnalysis, WorkflowReportData]


@dataclass(frozen=True)
class ReportInput:
    """Tagged report input; ``kind`` decides how ``payload`` is rendered."""

    kind: ReportKind
    payload: ReportPayload

    @classmethod
    def period_statistics(cls, statistics: Dict[str, BuildStatistics]) -> "ReportInput":
        return cls(ReportKind.PERIOD_STATISTICS, statistics)

    @classmethod
    def repository_analysis(cls, analysis: RepositoryAnalysis) -> "ReportInput":
        return cls(ReportKind.REPOSITORY_ANALYSIS, analysis)

    @classmethod
    def workflow_analysis(
        cls, analysis: WorkflowAnalysis, builds: List[BuildRecord]
    ) -> "ReportInput":
        return cls(ReportKind.WORKFLOW_ANALYSIS, WorkflowReportData(analysis, builds))
