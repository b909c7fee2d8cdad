"""Application entry point and orchestration for the Bitrise build analyzer."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .analysis import DataProcessor
from .bitrise_client import BitriseClient
from .cli import parse_args
from .config import load_access_token, load_config
from .errors import (
    AnalyzerError,
    ApiError,
    AuthenticationError,
    CalculationError,
    ConfigurationError,
    DataValidationError,
    DateCalculationError,
    OutputError,
)
from .models import BuildRecord
from .reports import ReportGenerator

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_UNEXPECTED_ERROR = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_AUTHENTICATION_ERROR = 3
EXIT_API_ERROR = 4
EXIT_DATA_ERROR = 5
EXIT_OUTPUT_ERROR = 6


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_build_records(path: Union[str, Path]) -> List[BuildRecord]:
    """Read build records from a JSON file.

    The file may hold a plain array of builds or a raw API page object with a
    ``data`` array.

    Raises:
        ConfigurationError: If the file cannot be read.
        DataValidationError: If the content is not a JSON list of objects.
    """
    input_path = Path(path)
    try:
        raw = input_path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read build data file '{input_path}': {exc}") from exc

    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise DataValidationError(f"Build data file '{input_path}' is not valid JSON.") from exc

    if isinstance(payload, dict):
        payload = payload.get("data")

    if not isinstance(payload, list):
        raise DataValidationError(f"Build data file '{input_path}' must contain a JSON array of builds.")

    if not all(isinstance(item, dict) for item in payload):
        raise DataValidationError(f"Build data file '{input_path}' contains non-object entries.")

    return [BuildRecord.from_dict(item) for item in payload]


def run_fetch(args: argparse.Namespace) -> int:
    """Download every build from the Bitrise API into ``args.output``."""
    token = load_access_token(args.token)
    client = BitriseClient(token=token)

    print(f"Fetching builds from Bitrise into '{args.output}'...")
    total = client.fetch_builds_to_file(args.output)
    print(f"Fetched {total} builds.")
    return EXIT_SUCCESS


def run_aggregate(args: argparse.Namespace) -> int:
    """Aggregate ``args.input`` into reports under ``args.output``."""
    config = load_config(args.config)
    logger.debug("Loaded configuration", extra={"performance": config.performance.to_dict()})

    print("Starting Bitrise build aggregation...")
    records = load_build_records(args.input)
    logger.info("Loaded build records", extra={"path": args.input, "builds": len(records)})

    processed = DataProcessor(config=config).process(records)
    ReportGenerator(config=config).generate(processed, args.output)

    print(f"Aggregation complete. Output directory: {args.output}")
    return EXIT_SUCCESS


def _exit_code_for(error: AnalyzerError) -> int:
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIGURATION_ERROR
    if isinstance(error, AuthenticationError):
        return EXIT_AUTHENTICATION_ERROR
    if isinstance(error, ApiError):
        return EXIT_API_ERROR
    if isinstance(error, (DataValidationError, CalculationError, DateCalculationError)):
        return EXIT_DATA_ERROR
    if isinstance(error, OutputError):
        return EXIT_OUTPUT_ERROR
    return EXIT_UNEXPECTED_ERROR


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command selected on the command line and return the exit code."""
    try:
        args = parse_args(argv)
        configure_logging(args.verbose)

        if args.command == "fetch":
            return run_fetch(args)
        return run_aggregate(args)
    except AnalyzerError as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"ERROR: {exc}", file=sys.stderr)
        return _exit_code_for(exc)
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"ERROR: Unexpected failure: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
