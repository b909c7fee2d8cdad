"""Build record validation.

A batch is accepted when at most half of its records are invalid; invalid
records are then dropped. When more than half fail, the whole batch is
rejected because the data source is most likely broken.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .config import Thresholds
from .errors import DataValidationError
from .models import KNOWN_STATUSES, BuildRecord
from .timeutils import parse_timestamp

logger = logging.getLogger(__name__)


class BuildValidator:
    """Checks required fields, timestamps and durations of build records."""

    def __init__(self, thresholds: Optional[Thresholds] = None) -> None:
        self._thresholds = thresholds or Thresholds()

    def check(self, record: BuildRecord) -> Optional[str]:
        """Return the reason ``record`` is invalid, or ``None`` when it is valid."""
        if record.triggered_at is None or record.status_text is None:
            return "missing required fields (triggered_at, status_text)"

        triggered = parse_timestamp(record.triggered_at)
        if triggered is None:
            return f"invalid triggered_at timestamp: {record.triggered_at!r}"

        if record.finished_at is not None:
            finished = parse_timestamp(record.finished_at)
            if finished is None:
                return f"invalid finished_at timestamp: {record.finished_at!r}"

            duration = (finished - triggered).total_seconds()
            if duration < 0:
                return "finished_at is earlier than triggered_at"
            if duration < self._thresholds.min_duration_seconds:
                return f"duration is implausibly short: {duration:.0f}s"
            if duration > self._thresholds.max_duration_seconds:
                return f"duration is implausibly long: {duration:.0f}s"

        if record.status_text not in KNOWN_STATUSES:
            return f"unrecognized status: {record.status_text!r}"

        return None

    def validate(self, records: Sequence[BuildRecord]) -> List[BuildRecord]:
        """Return the valid subset of ``records``.

        Raises:
            DataValidationError: If more than half of the records are invalid.
        """
        valid: List[BuildRecord] = []
        reasons: List[str] = []

        for index, record in enumerate(records):
            reason = self.check(record)
            if reason is None:
                valid.append(record)
            else:
                reasons.append(f"build {index}: {reason}")

        if len(reasons) > len(records) / 2:
            raise DataValidationError(
                f"More than half of the build records are invalid ({len(reasons)} of "
                f"{len(records)}): " + "; ".join(reasons),
                reasons=reasons,
            )

        if reasons:
            logger.debug(
                "Dropped invalid build records",
                extra={"builds_total": len(records), "builds_dropped": len(reasons)},
            )

        return valid
