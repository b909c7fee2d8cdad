"""Report file emission."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from .errors import OutputError

logger = logging.getLogger(__name__)

# Spreadsheet applications need the BOM to detect UTF-8 in CSV files.
UTF8_BOM = "\ufeff"


class OutputWriter:
    """Writes report content into a directory, creating it when needed."""

    def write_csv(self, content: str, filename: str, directory: Union[str, Path]) -> Path:
        return self._write(UTF8_BOM + content, filename, directory)

    def write_markdown(self, content: str, filename: str, directory: Union[str, Path]) -> Path:
        return self._write(content, filename, directory)

    def write_json(self, content: str, filename: str, directory: Union[str, Path]) -> Path:
        return self._write(content, filename, directory)

    def _write(self, content: str, filename: str, directory: Union[str, Path]) -> Path:
        target_dir = Path(directory)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputError(f"Cannot create output directory '{target_dir}': {exc}") from exc

        path = target_dir / filename
        try:
            # newline="" keeps "\n" line endings on every platform.
            with path.open("w", encoding="utf-8", newline="") as handle:
                handle.write(content)
        except OSError as exc:
            raise OutputError(f"Cannot write report file '{path}': {exc}") from exc

        logger.debug("Wrote report file", extra={"path": str(path), "chars": len(content)})
        return path
