"""Command-line argument parsing for the engineering metrics collector."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG_PATH


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for a collection run.

    Returns:
        Parsed CLI arguments containing the config file path and the
        print-only and verbose flags.
    """
    parser = argparse.ArgumentParser(
        prog="eng-metrics-collector",
        description=(
            "Collect GitHub pull request metrics (time to first review, time to "
            "merge) and upload them to BigQuery or print them to the console."
        ),
    )

    parser.add_argument(
        "config_path",
        nargs="?",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the JSON configuration file (default: {DEFAULT_CONFIG_PATH}).",
    )
    parser.add_argument(
        "--print-only",
        action="store_true",
        help="Print metrics to the console instead of uploading them to BigQuery.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    return parser.parse_args(argv)
