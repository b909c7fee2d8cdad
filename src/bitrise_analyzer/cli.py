"""Command-line argument parsing for the Bitrise build analyzer."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence


def _non_empty(value: str) -> str:
    """Parse and validate a non-empty CLI string value.

    Raises:
        argparse.ArgumentTypeError: If value is empty or whitespace.
    """
    if not value.strip():
        raise argparse.ArgumentTypeError("must not be empty")
    return value


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments. ``command`` is ``"fetch"`` or ``"aggregate"``.
    """
    parser = argparse.ArgumentParser(
        prog="bitrise-analyzer",
        description="Fetch Bitrise build data and generate build health reports.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser(
        "fetch",
        help="Download all builds from the Bitrise API into a JSON file.",
    )
    fetch.add_argument(
        "--token",
        default=None,
        help="Bitrise access token (default: BITRISE_ACCESS_TOKEN environment variable).",
    )
    fetch.add_argument(
        "--output",
        type=_non_empty,
        default="data.json",
        help="Path of the JSON file to write (default: data.json).",
    )
    fetch.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    aggregate = subparsers.add_parser(
        "aggregate",
        help="Aggregate a build data file into CSV/Markdown/JSON reports.",
    )
    aggregate.add_argument(
        "-i",
        "--input",
        type=_non_empty,
        default="data.json",
        help="Build data JSON file (default: data.json).",
    )
    aggregate.add_argument(
        "-o",
        "--output",
        type=_non_empty,
        default="output",
        help="Directory to write reports into (default: output).",
    )
    aggregate.add_argument(
        "-c",
        "--config",
        default=None,
        help="Optional JSON configuration file.",
    )
    aggregate.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    return parser.parse_args(argv)
