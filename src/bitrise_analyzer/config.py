"""Configuration parsing and validation for the Bitrise build analyzer.

The optional configuration file is JSON with camelCase keys::

    {
      "periods": [{"name": "7 days", "days": 7}, {"name": "all time", "days": null}],
      "thresholds": {"minWorkflowExecutions": 5, "minFailureRate": 50.0},
      "outputFormats": ["csv", "markdown"],
      "performance": {"batchSize": 1000}
    }

Missing keys fall back to defaults; present keys are type-checked.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .errors import AuthenticationError, ConfigurationError

TOKEN_ENV_VAR = "BITRISE_ACCESS_TOKEN"
OUTPUT_FORMATS = ("csv", "markdown", "json")
_UNSAFE_FILENAME_CHARS = re.compile(r"[\s/\\]+")


def period_file_stem(name: str) -> str:
    """Return ``name`` with whitespace and path separators replaced by ``_``."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name.strip())


@dataclass(frozen=True)
class Period:
    """A named relative time window; ``days=None`` means all time."""

    name: str
    days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "days": self.days}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Period":
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("Invalid period: 'name' must be a non-empty string.")

        days = payload.get("days")
        if days is not None:
            if isinstance(days, bool) or not isinstance(days, int) or days < 0:
                raise ConfigurationError(
                    f"Invalid period '{name}': 'days' must be a non-negative integer or null."
                )
        return cls(name=name, days=days)


@dataclass(frozen=True)
class Thresholds:
    """Limits that decide workflow eligibility and plausible build durations."""

    min_workflow_executions: int = 5
    min_failure_rate: float = 50.0
    top_workflow_count: int = 3
    max_duration_hours: int = 24
    min_duration_seconds: int = 0

    @property
    def max_duration_seconds(self) -> int:
        return self.max_duration_hours * 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minWorkflowExecutions": self.min_workflow_executions,
            "minFailureRate": self.min_failure_rate,
            "topWorkflowCount": self.top_workflow_count,
            "maxDurationHours": self.max_duration_hours,
            "minDurationSeconds": self.min_duration_seconds,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Thresholds":
        defaults = cls()
        return cls(
            min_workflow_executions=_read_int(
                payload, "minWorkflowExecutions", defaults.min_workflow_executions
            ),
            min_failure_rate=_read_float(payload, "minFailureRate", defaults.min_failure_rate),
            top_workflow_count=_read_int(payload, "topWorkflowCount", defaults.top_workflow_count),
            max_duration_hours=_read_int(payload, "maxDurationHours", defaults.max_duration_hours),
            min_duration_seconds=_read_int(
                payload, "minDurationSeconds", defaults.min_duration_seconds
            ),
        )


@dataclass(frozen=True)
class PerformanceSettings:
    """Advisory tuning knobs; analysis results never depend on them."""

    batch_size: int = 1000
    enable_parallel_processing: bool = True
    max_memory_usage_mb: int = 512

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchSize": self.batch_size,
            "enableParallelProcessing": self.enable_parallel_processing,
            "maxMemoryUsageMB": self.max_memory_usage_mb,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PerformanceSettings":
        defaults = cls()
        parallel = payload.get("enableParallelProcessing", defaults.enable_parallel_processing)
        if not isinstance(parallel, bool):
            raise ConfigurationError(
                "Invalid value for 'enableParallelProcessing': expected a boolean."
            )
        return cls(
            batch_size=_read_int(payload, "batchSize", defaults.batch_size, minimum=1),
            enable_parallel_processing=parallel,
            max_memory_usage_mb=_read_int(
                payload, "maxMemoryUsageMB", defaults.max_memory_usage_mb, minimum=1
            ),
        )


def _default_periods() -> Tuple[Period, ...]:
    return (
        Period("7 days", 7),
        Period("30 days", 30),
        Period("90 days", 90),
        Period("all time", None),
    )


@dataclass(frozen=True)
class AnalysisConfig:
    """Validated settings used by the processing pipeline and report generator."""

    periods: Tuple[Period, ...] = field(default_factory=_default_periods)
    thresholds: Thresholds = field(default_factory=Thresholds)
    output_formats: Tuple[str, ...] = ("csv", "markdown")
    performance: PerformanceSettings = field(default_factory=PerformanceSettings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "periods": [period.to_dict() for period in self.periods],
            "thresholds": self.thresholds.to_dict(),
            "outputFormats": list(self.output_formats),
            "performance": self.performance.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a configuration from parsed JSON, applying defaults for missing keys.

        Raises:
            ConfigurationError: If any present value has the wrong type or range.
        """
        if not isinstance(payload, Mapping):
            raise ConfigurationError("Configuration root must be a JSON object.")

        defaults = cls()

        periods = defaults.periods
        if "periods" in payload:
            raw_periods = payload["periods"]
            if not isinstance(raw_periods, list) or not raw_periods:
                raise ConfigurationError("Invalid value for 'periods': expected a non-empty list.")
            if not all(isinstance(item, Mapping) for item in raw_periods):
                raise ConfigurationError("Invalid value for 'periods': entries must be objects.")
            periods = tuple(Period.from_dict(item) for item in raw_periods)
            names = [period.name for period in periods]
            if len(set(names)) != len(names):
                raise ConfigurationError("Invalid value for 'periods': names must be unique.")
            stems = [period_file_stem(name) for name in names]
            if len(set(stems)) != len(stems):
                raise ConfigurationError(
                    "Invalid value for 'periods': names must stay unique once whitespace "
                    "and path separators are replaced by '_'."
                )

        thresholds = Thresholds.from_dict(_read_section(payload, "thresholds"))
        performance = PerformanceSettings.from_dict(_read_section(payload, "performance"))

        output_formats = defaults.output_formats
        if "outputFormats" in payload:
            raw_formats = payload["outputFormats"]
            if not isinstance(raw_formats, list) or not all(
                isinstance(item, str) for item in raw_formats
            ):
                raise ConfigurationError("Invalid value for 'outputFormats': expected a list of strings.")
            unknown = sorted(set(raw_formats) - set(OUTPUT_FORMATS))
            if unknown:
                raise ConfigurationError(
                    f"Unsupported output formats: {', '.join(unknown)} "
                    f"(supported: {', '.join(OUTPUT_FORMATS)})."
                )
            output_formats = tuple(dict.fromkeys(raw_formats))

        return cls(
            periods=periods,
            thresholds=thresholds,
            output_formats=output_formats,
            performance=performance,
        )


def _read_section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = payload.get(key, {})
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"Invalid value for '{key}': expected an object.")
    return section


def _read_int(payload: Mapping[str, Any], key: str, default: int, minimum: int = 0) -> int:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"Invalid value for '{key}': expected an integer.")
    if value < minimum:
        raise ConfigurationError(f"Invalid value for '{key}': expected at least {minimum}.")
    return value


def _read_float(payload: Mapping[str, Any], key: str, default: float) -> float:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"Invalid value for '{key}': expected a number.")
    if not 0 <= value <= 100:
        raise ConfigurationError(f"Invalid value for '{key}': expected a value in [0, 100].")
    return float(value)


def load_config(path: Optional[Union[str, Path]] = None) -> AnalysisConfig:
    """Load the analysis configuration.

    Args:
        path: Optional JSON configuration file. ``None`` yields defaults.

    Returns:
        A validated ``AnalysisConfig`` instance.

    Raises:
        ConfigurationError: If the file cannot be read, is not valid JSON, or
            contains invalid values.
    """
    if path is None:
        return AnalysisConfig()

    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration file '{config_path}': {exc}") from exc

    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Configuration file '{config_path}' is not valid JSON.") from exc

    return AnalysisConfig.from_dict(payload)


def load_access_token(token: Optional[str] = None) -> str:
    """Resolve the Bitrise access token from an explicit value or the environment.

    Raises:
        AuthenticationError: If no token is configured.
    """
    resolved = (token or os.getenv(TOKEN_ENV_VAR, "")).strip()
    if not resolved:
        raise AuthenticationError(
            "Missing required Bitrise access token. "
            f"Pass --token or set the '{TOKEN_ENV_VAR}' environment variable."
        )
    return resolved
