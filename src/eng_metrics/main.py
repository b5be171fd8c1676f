"""Entry point for the engineering metrics collector."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .cli import parse_args
from .collector import MetricsCollector
from .config import load_config
from .errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    DataValidationError,
    WarehouseError,
)
from .github_client import GitHubClient
from .logging_config import configure_logging
from .warehouse import BigQueryClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3
EXIT_API = 4
EXIT_WAREHOUSE = 5


def orchestrate_metrics_collection(argv: Optional[Sequence[str]] = None) -> int:
    """Run one collection and map failures to process exit codes.

    Returns:
        ``0`` on success (including when no metrics were found), otherwise a
        non-zero code identifying the failure category.
    """
    try:
        args = parse_args(argv)
        configure_logging(logging.DEBUG if args.verbose else logging.INFO)

        config = load_config(config_path=args.config_path, print_only=args.print_only)

        github_client = GitHubClient(token=config.github_token)
        try:
            warehouse_client = None
            if not config.print_only:
                warehouse_client = BigQueryClient(
                    project_id=config.bigquery_project_id or "",
                    credentials_path=config.service_account_key_path,
                )
            else:
                logger.info("Running in print-only mode, BigQuery client not initialized")

            collector = MetricsCollector(
                config=config,
                github_client=github_client,
                warehouse_client=warehouse_client,
            )
            records = collector.run()
        finally:
            github_client.close()

        if config.print_only:
            logger.info("Collected and printed metrics", extra={"metrics": len(records)})
        else:
            logger.info("Collected and uploaded metrics to BigQuery", extra={"metrics": len(records)})
        return EXIT_OK
    except ConfigurationError as exc:
        logger.error("Configuration error", extra={"error": str(exc)})
        return EXIT_CONFIGURATION
    except AuthenticationError as exc:
        logger.error("Authentication error", extra={"error": str(exc)})
        return EXIT_AUTHENTICATION
    except ApiError as exc:
        logger.error("GitHub API error", extra={"error": str(exc)})
        return EXIT_API
    except WarehouseError as exc:
        logger.error("BigQuery error", extra={"error": str(exc), "row_errors": len(exc.errors)})
        return EXIT_WAREHOUSE
    except DataValidationError as exc:
        logger.error("Data validation error", extra={"error": str(exc)})
        return EXIT_UNEXPECTED
    except Exception:
        logger.exception("Unexpected error running engineering metrics collection")
        return EXIT_UNEXPECTED


def main() -> None:
    raise SystemExit(orchestrate_metrics_collection())


if __name__ == "__main__":
    main()
