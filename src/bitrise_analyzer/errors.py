"""Custom exception types for the Bitrise build analyzer."""

from __future__ import annotations

from typing import List, Optional


class AnalyzerError(Exception):
    """Base exception for all recoverable analyzer errors."""


class ConfigurationError(AnalyzerError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(AnalyzerError):
    """Raised when the Bitrise access token is unavailable or rejected."""


class ApiError(AnalyzerError):
    """Raised when a Bitrise API request fails or returns an unexpected response."""


class DataValidationError(AnalyzerError):
    """Raised when a build record batch is not usable for analysis.

    ``reasons`` holds the per-record failure descriptions that led to the
    batch being rejected.
    """

    def __init__(self, message: str, reasons: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.reasons: List[str] = list(reasons or [])


class CalculationError(AnalyzerError):
    """Raised when statistics cannot be computed for the given input."""


class DateCalculationError(AnalyzerError):
    """Raised when a relative date window cannot be represented."""


class OutputError(AnalyzerError):
    """Raised when a report directory or file cannot be written."""
