"""CSV, Markdown and JSON report rendering.

Report inputs arrive as a tagged ``ReportInput``; each generator looks up a
renderer for the tag and rejects tags it does not support. The daily, hourly
and machine-type tables need dimensions that the aggregate statistics do not
keep, so they are computed directly from the validated builds.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from .analysis import failure_rate, group_builds
from .config import AnalysisConfig, period_file_stem
from .errors import CalculationError, OutputError
from .models import (
    BuildRecord,
    BuildStatistics,
    ProcessedData,
    RepositoryAnalysis,
    ReportInput,
    ReportKind,
    WorkflowReportData,
)
from .output import OutputWriter
from .stats import calculate_mean, count_status, format_duration
from .timeutils import extract_durations, format_day, format_hour, parse_timestamp

logger = logging.getLogger(__name__)

STATISTICS_COLUMNS = [
    "Total Builds",
    "Success",
    "Failed",
    "Aborted",
    "Success Rate (%)",
    "Average Duration (min)",
    "Median (min)",
    "Min (min)",
    "Max (min)",
    "P50 (min)",
    "P75 (min)",
    "P90 (min)",
    "P95 (min)",
    "P99 (min)",
    "Std Dev (min)",
    "Total Cost",
    "Average Cost",
]
SUMMARY_HEADER = ["Period"] + STATISTICS_COLUMNS
REPOSITORY_HEADER = ["Repository", "Period"] + STATISTICS_COLUMNS + [
    "Top Workflows",
    "High Failure Workflows",
]
WORKFLOW_HEADER = ["Workflow", "Executions", "Average Duration (min)", "Failure Rate (%)"]
DAILY_HEADER = ["Date", "Builds", "Success", "Failed", "Average Duration (min)"]
HOURLY_HEADER = ["Hour", "Builds", "Success Rate (%)"]
MACHINE_HEADER = [
    "Machine Type",
    "Builds",
    "Usage Rate (%)",
    "Average Duration (min)",
    "Total Duration (min)",
    "Total Cost",
]


def csv_line(fields: Sequence[str], quoted: Sequence[str] = ()) -> str:
    """Render one CSV row terminated by ``\\n``.

    ``fields`` are quoted only when they contain a comma, quote or newline.
    ``quoted`` values are appended after them and always quoted.
    """
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(fields)
    row = buffer.getvalue()[:-1]
    if quoted:
        row = ",".join([row] + [quote_csv(value) for value in quoted])
    return row + "\n"


def escape_csv(value: str) -> str:
    """Quote ``value`` when it contains a comma, quote or newline."""
    if not value:
        return value
    return csv_line([value])[:-1]


def quote_csv(value: str) -> str:
    """Always wrap ``value`` in quotes, doubling internal quotes."""
    return '"' + value.replace('"', '""') + '"'


def format_rate(value: float) -> str:
    return f"{value:.1f}"


def format_minutes(seconds: float) -> str:
    return f"{seconds / 60:.2f}"


def report_filename(period: str) -> str:
    """Return the Markdown file name for ``period`` (``"7 days"`` -> ``report_7_days.md``)."""
    return f"report_{period_file_stem(period)}.md"


def statistics_fields(stats: BuildStatistics) -> List[str]:
    return [
        str(stats.total_builds),
        str(stats.success_count),
        str(stats.error_count),
        str(stats.aborted_count),
        format_rate(stats.success_rate),
        format_minutes(stats.average_duration),
        format_minutes(stats.median_duration),
        format_minutes(stats.min_duration),
        format_minutes(stats.max_duration),
        format_minutes(stats.p50_duration),
        format_minutes(stats.p75_duration),
        format_minutes(stats.p90_duration),
        format_minutes(stats.p95_duration),
        format_minutes(stats.p99_duration),
        format_minutes(stats.standard_deviation),
        str(stats.total_credit_cost),
        f"{stats.average_credit_cost:.2f}",
    ]


def generate_summary_csv(statistics: Mapping[str, BuildStatistics]) -> str:
    """One row per period, in the order the periods were configured."""
    lines = [csv_line(SUMMARY_HEADER)]
    for period, stats in statistics.items():
        lines.append(csv_line([period] + statistics_fields(stats)))
    return "".join(lines)


def generate_repository_csv(analysis: RepositoryAnalysis) -> str:
    lines = [csv_line(REPOSITORY_HEADER)]
    for repository, period_stats in analysis.repository_stats.items():
        workflows = "; ".join(analysis.repository_workflows.get(repository, []))
        failures = "; ".join(analysis.repository_failures.get(repository, []))
        for period, stats in period_stats.items():
            lines.append(
                csv_line(
                    [repository, period] + statistics_fields(stats),
                    quoted=[workflows, failures],
                )
            )
    return "".join(lines)


def generate_workflow_csv(data: WorkflowReportData) -> str:
    """One row per top workflow with its mean duration and error rate."""
    groups = group_builds(data.builds, lambda record: record.workflow_name)
    lines = [csv_line(WORKFLOW_HEADER)]
    for workflow, count in data.analysis.top_workflows:
        builds = groups.get(workflow, [])
        average = calculate_mean(extract_durations(builds))
        lines.append(
            csv_line(
                [
                    workflow,
                    str(count),
                    format_minutes(average),
                    format_rate(failure_rate(builds)),
                ]
            )
        )
    return "".join(lines)


def generate_daily_trend_csv(builds: Sequence[BuildRecord]) -> str:
    """One row per UTC calendar day, oldest first."""

    def day_key(record: BuildRecord) -> str:
        triggered = parse_timestamp(record.triggered_at)
        return format_day(triggered) if triggered is not None else "Unknown"

    lines = [csv_line(DAILY_HEADER)]
    for day, day_builds in sorted(group_builds(builds, day_key).items()):
        average = calculate_mean(extract_durations(day_builds))
        lines.append(
            csv_line(
                [
                    day,
                    str(len(day_builds)),
                    str(count_status(day_builds, "success")),
                    str(count_status(day_builds, "error")),
                    format_minutes(average),
                ]
            )
        )
    return "".join(lines)


def generate_hourly_distribution_csv(builds: Sequence[BuildRecord]) -> str:
    """Exactly 24 rows, one per UTC hour, zero-filled for hours without builds."""

    def hour_key(record: BuildRecord) -> str:
        triggered = parse_timestamp(record.triggered_at)
        return format_hour(triggered) if triggered is not None else "Unknown"

    groups = group_builds(builds, hour_key)
    lines = [csv_line(HOURLY_HEADER)]
    for hour in range(24):
        label = f"{hour:02d}"
        hour_builds = groups.get(label, [])
        total = len(hour_builds)
        rate = count_status(hour_builds, "success") / total * 100 if total else 0.0
        lines.append(csv_line([f"{label}:00", str(total), format_rate(rate)]))
    return "".join(lines)


def generate_machine_type_csv(builds: Sequence[BuildRecord]) -> str:
    """One row per machine type, most used first."""
    total_builds = len(builds)
    groups = group_builds(builds, lambda record: record.machine_type)
    ordered = sorted(groups.items(), key=lambda item: (-len(item[1]), item[0]))

    lines = [csv_line(MACHINE_HEADER)]
    for machine_type, machine_builds in ordered:
        durations = extract_durations(machine_builds)
        usage_rate = len(machine_builds) / total_builds * 100 if total_builds else 0.0
        total_cost = sum(
            record.credit_cost for record in machine_builds if record.credit_cost is not None
        )
        lines.append(
            csv_line(
                [
                    machine_type,
                    str(len(machine_builds)),
                    format_rate(usage_rate),
                    format_minutes(calculate_mean(durations)),
                    format_minutes(sum(durations)),
                    str(total_cost),
                ]
            )
        )
    return "".join(lines)


class CsvGenerator:
    """Renders tagged aggregate inputs as CSV text."""

    def __init__(self) -> None:
        self._renderers: Dict[ReportKind, Callable[..., str]] = {
            ReportKind.PERIOD_STATISTICS: generate_summary_csv,
            ReportKind.REPOSITORY_ANALYSIS: generate_repository_csv,
            ReportKind.WORKFLOW_ANALYSIS: generate_workflow_csv,
        }

    def generate(self, report_input: ReportInput) -> str:
        renderer = self._renderers.get(report_input.kind)
        if renderer is None:
            raise CalculationError(f"Unsupported CSV report input: {report_input.kind!r}")
        return renderer(report_input.payload)


def render_period_markdown(stats: BuildStatistics) -> str:
    lines = [
        f"# Bitrise Build Report - {stats.period}",
        "",
        "## Basic Statistics",
        "",
        "| Metric | Value |",
        "|------|-----|",
        f"| Total builds | {stats.total_builds} |",
        f"| Success | {stats.success_count} ({format_rate(stats.success_rate)}%) |",
        f"| Failed | {stats.error_count} |",
        f"| Aborted | {stats.aborted_count} |",
        "",
        "## Duration Statistics",
        "",
        "| Metric | Value |",
        "|------|-----|",
        f"| Average | {format_duration(stats.average_duration)} |",
        f"| Median | {format_duration(stats.median_duration)} |",
        f"| Min | {format_duration(stats.min_duration)} |",
        f"| Max | {format_duration(stats.max_duration)} |",
        f"| P50 | {format_duration(stats.p50_duration)} |",
        f"| P75 | {format_duration(stats.p75_duration)} |",
        f"| P90 | {format_duration(stats.p90_duration)} |",
        f"| P95 | {format_duration(stats.p95_duration)} |",
        f"| P99 | {format_duration(stats.p99_duration)} |",
        f"| Std dev | {format_duration(stats.standard_deviation)} |",
        "",
        "## Cost Statistics",
        "",
        "| Metric | Value |",
        "|------|-----|",
        f"| Total cost | {stats.total_credit_cost} credits |",
        f"| Average cost | {stats.average_credit_cost:.2f} credits |",
        "",
    ]
    return "\n".join(lines)


class MarkdownGenerator:
    """Renders per-period statistics as Markdown documents."""

    def generate(self, report_input: ReportInput) -> Dict[str, str]:
        """Return a mapping of file name to Markdown document.

        Raises:
            CalculationError: If the input kind has no Markdown rendering.
            OutputError: If two periods map to the same file name.
        """
        if report_input.kind is not ReportKind.PERIOD_STATISTICS:
            raise CalculationError(f"Unsupported Markdown report input: {report_input.kind!r}")

        documents: Dict[str, str] = {}
        for period, stats in report_input.payload.items():
            filename = report_filename(period)
            if filename in documents:
                raise OutputError(
                    f"Periods produce the same report file '{filename}'; rename one of them."
                )
            documents[filename] = render_period_markdown(stats)
        return documents


def render_json_summary(data: ProcessedData) -> str:
    payload = {
        "statistics": {period: stats.to_dict() for period, stats in data.statistics.items()},
        "workflow_analysis": data.workflow_analysis.to_dict(),
        "repository_analysis": data.repository_analysis.to_dict(),
    }
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def print_console_summary(statistics: Mapping[str, BuildStatistics]) -> None:
    separator = "=" * 60
    print("\n" + separator)
    print("Bitrise Build Statistics Summary")
    print(separator)
    for period, stats in statistics.items():
        print(f"\n{period}:")
        print(f"  Total builds: {stats.total_builds}")
        print(f"  Success: {stats.success_count} ({format_rate(stats.success_rate)}%)")
        print(f"  Failed: {stats.error_count}")
        print(f"  Aborted: {stats.aborted_count}")
        print(f"  Average duration: {format_duration(stats.average_duration)}")
        print(f"  Median duration: {format_duration(stats.median_duration)}")
        print(f"  Total cost: {stats.total_credit_cost} credits")
    print("\n" + separator)


class ReportGenerator:
    """Writes every configured report format for a ``ProcessedData`` aggregate."""

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        csv_generator: Optional[CsvGenerator] = None,
        markdown_generator: Optional[MarkdownGenerator] = None,
        output_writer: Optional[OutputWriter] = None,
    ) -> None:
        self._config = config or AnalysisConfig()
        self._csv = csv_generator or CsvGenerator()
        self._markdown = markdown_generator or MarkdownGenerator()
        self._writer = output_writer or OutputWriter()

    def generate(self, data: ProcessedData, directory: Union[str, Path]) -> List[Path]:
        """Write the reports and print the console summary.

        Files are written one after another; the first failure raises
        ``OutputError`` and nothing after it is written.
        """
        written: List[Path] = []
        formats = self._config.output_formats

        if "csv" in formats:
            written.extend(self._write_csv_reports(data, directory))
        if "markdown" in formats:
            written.extend(self._write_markdown_reports(data, directory))
        if "json" in formats:
            written.append(
                self._writer.write_json(render_json_summary(data), "summary.json", directory)
            )

        logger.info(
            "Generated reports",
            extra={"directory": str(directory), "files_written": len(written)},
        )
        print_console_summary(data.statistics)
        return written

    def _write_csv_reports(self, data: ProcessedData, directory: Union[str, Path]) -> List[Path]:
        tables = [
            ("builds_summary.csv", self._csv.generate(ReportInput.period_statistics(data.statistics))),
            (
                "repository_stats.csv",
                self._csv.generate(ReportInput.repository_analysis(data.repository_analysis)),
            ),
            (
                "workflow_stats.csv",
                self._csv.generate(
                    ReportInput.workflow_analysis(data.workflow_analysis, data.builds)
                ),
            ),
            ("daily_trends.csv", generate_daily_trend_csv(data.builds)),
            ("hourly_distribution.csv", generate_hourly_distribution_csv(data.builds)),
            ("machine_type_stats.csv", generate_machine_type_csv(data.builds)),
        ]
        return [self._writer.write_csv(content, filename, directory) for filename, content in tables]

    def _write_markdown_reports(
        self, data: ProcessedData, directory: Union[str, Path]
    ) -> List[Path]:
        documents = self._markdown.generate(ReportInput.period_statistics(data.statistics))
        return [
            self._writer.write_markdown(content, filename, directory)
            for filename, content in documents.items()
        ]
