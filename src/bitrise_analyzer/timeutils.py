"""Timestamp parsing, duration extraction and period filtering.

All helpers here are pure functions: no formatter objects are cached or
shared between calls.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from .config import Period
from .errors import DateCalculationError
from .models import BuildRecord

logger = logging.getLogger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Bitrise ISO8601 timestamp into a timezone-aware UTC datetime.

    Returns ``None`` for missing or malformed values, including date-only
    values and values that separate date and time with anything but ``T``.
    Naive timestamps are assumed to be UTC.
    """
    if not value or not isinstance(value, str):
        return None

    normalized = value.strip()
    if len(normalized) <= 10 or normalized[10] not in ("T", "t"):
        return None
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_day(value: datetime) -> str:
    """Format a datetime as its UTC calendar day (``YYYY-MM-DD``)."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d")


def format_hour(value: datetime) -> str:
    """Format a datetime as its two-digit UTC hour of day."""
    return value.astimezone(timezone.utc).strftime("%H")


def extract_duration(record: BuildRecord, max_seconds: Optional[float] = None) -> Optional[float]:
    """Return elapsed seconds between trigger and finish, or ``None``.

    A duration is unavailable when either timestamp is missing or malformed,
    when it is negative, or when it exceeds ``max_seconds`` (if given).
    """
    started = parse_timestamp(record.triggered_at)
    finished = parse_timestamp(record.finished_at)
    if started is None or finished is None:
        return None

    duration = (finished - started).total_seconds()
    if duration < 0:
        return None
    if max_seconds is not None and duration > max_seconds:
        return None
    return duration


def extract_durations(
    records: Sequence[BuildRecord], max_seconds: Optional[float] = None
) -> List[float]:
    """Collect every available duration from ``records``, in input order."""
    durations: List[float] = []
    for record in records:
        duration = extract_duration(record, max_seconds=max_seconds)
        if duration is not None:
            durations.append(duration)
    return durations


def period_start(days: int, now: Optional[datetime] = None) -> datetime:
    """Return ``now - days`` as a UTC datetime.

    Raises:
        DateCalculationError: If the subtraction falls outside the calendar.
    """
    reference = now or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    try:
        return reference - timedelta(days=days)
    except OverflowError as exc:
        raise DateCalculationError(
            f"Cannot compute start of a {days}-day window from {reference.isoformat()}."
        ) from exc


def filter_by_period(
    records: Sequence[BuildRecord],
    period: Period,
    now: Optional[datetime] = None,
) -> List[BuildRecord]:
    """Select records triggered within ``period``.

    An all-time period returns the input unchanged. Records whose trigger
    timestamp is missing or malformed never fall inside a bounded window.
    """
    if period.days is None:
        return list(records)

    start = period_start(period.days, now=now)
    selected: List[BuildRecord] = []
    for record in records:
        triggered = parse_timestamp(record.triggered_at)
        if triggered is not None and triggered >= start:
            selected.append(record)

    logger.debug(
        "Filtered builds by period",
        extra={"period": period.name, "builds_in": len(records), "builds_out": len(selected)},
    )
    return selected
