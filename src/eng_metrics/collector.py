"""Collection orchestration for pull request metrics.

The collector walks every configured repository, fetches pull requests updated
within the lookback window, fetches each PR's timeline and reviews, runs the
calculator for every enabled metric, and dispatches the results either to the
console or to BigQuery.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from .calculator import calculate_metric
from .config import Config
from .errors import ApiError, DataValidationError, RateLimitError
from .github_client import GitHubClient
from .models import AnyMetric, MetricKind, PullRequest, Repository
from .stats import generate_report
from .warehouse import BigQueryClient, UploadResult

logger = logging.getLogger(__name__)


def group_by_metric_kind(records: Sequence[AnyMetric]) -> Dict[MetricKind, List[AnyMetric]]:
    """Partition records by metric kind, in ``MetricKind`` declaration order.

    Raises:
        DataValidationError: If a record does not carry a known metric kind.
    """
    grouped: Dict[MetricKind, List[AnyMetric]] = {kind: [] for kind in MetricKind}

    for record in records:
        kind = getattr(record, "kind", None)
        if not isinstance(kind, MetricKind):
            raise DataValidationError(f"Unknown metric kind for record: {record!r}")
        grouped[kind].append(record)

    return {kind: items for kind, items in grouped.items() if items}


class MetricsCollector:
    """Drives one collection run end to end."""

    def __init__(
        self,
        config: Config,
        github_client: GitHubClient,
        warehouse_client: Optional[BigQueryClient] = None,
    ) -> None:
        self._config = config
        self._github_client = github_client
        self._warehouse_client = warehouse_client
        self.failed_repositories: List[str] = []

    def table_name_for(self, kind: MetricKind) -> str:
        """Return the destination table configured for an enabled metric kind."""
        settings = self._config.metrics.get(kind)
        if settings is None or not settings.enabled:
            raise DataValidationError(f"Metric '{kind}' is not enabled")
        return settings.table_name

    def _collect_pull_request_metrics(self, repository: Repository, pr: PullRequest) -> List[AnyMetric]:
        timeline_events = self._github_client.list_timeline_events(repository, pr.number)
        review_events = self._github_client.list_reviews(repository, pr.number)

        records: List[AnyMetric] = []
        for kind in self._config.enabled_metrics:
            record = calculate_metric(kind, pr, timeline_events, review_events)
            if record is None:
                logger.info(
                    "Skipping unscoreable pull request",
                    extra={"repository": repository.full_name, "pr_number": pr.number, "metric": kind.value},
                )
                continue
            records.append(record)
        return records

    def collect_repository_metrics(
        self,
        repository: Repository,
        now: Optional[datetime] = None,
    ) -> List[AnyMetric]:
        """Collect metrics for every recently updated PR of one repository.

        A failure fetching one PR's events is logged and that PR is skipped.
        Rate-limit failures and failures listing the repository's pull requests
        propagate to the caller.
        """
        current_time = now or datetime.now(timezone.utc)
        since = current_time - timedelta(days=self._config.lookback_days)

        logger.info(
            "Collecting metrics",
            extra={"repository": repository.full_name, "since": since.isoformat()},
        )

        pull_requests = self._github_client.list_pull_requests(
            repository,
            state="all",
            since=since,
            target_branch=self._config.target_branch,
        )

        records: List[AnyMetric] = []
        for pr in pull_requests:
            try:
                records.extend(self._collect_pull_request_metrics(repository, pr))
            except RateLimitError:
                raise
            except ApiError as exc:
                logger.error(
                    "Error collecting metrics for pull request",
                    extra={"repository": repository.full_name, "pr_number": pr.number, "error": str(exc)},
                )

        logger.info(
            "Collected repository metrics",
            extra={
                "repository": repository.full_name,
                "prs_total": len(pull_requests),
                "metrics": len(records),
            },
        )
        return records

    def collect(self, now: Optional[datetime] = None) -> List[AnyMetric]:
        """Collect metrics for all configured repositories.

        A repository whose pull requests cannot be fetched is logged, recorded
        in ``failed_repositories`` and skipped.
        """
        self.failed_repositories = []
        all_records: List[AnyMetric] = []

        for repository in self._config.repositories:
            try:
                all_records.extend(self.collect_repository_metrics(repository, now=now))
            except ApiError as exc:
                self.failed_repositories.append(repository.full_name)
                logger.error(
                    "Error collecting metrics for repository",
                    extra={"repository": repository.full_name, "error": str(exc)},
                )

        logger.info("Collected metrics in total", extra={"metrics": len(all_records)})
        return all_records

    def print_metrics(self, records: Sequence[AnyMetric]) -> None:
        """Print one report per metric kind to standard output."""
        if not records:
            logger.warning("No metrics to print")
            return

        for kind, kind_records in group_by_metric_kind(records).items():
            print()
            print(generate_report(kind, kind_records))
            print()

    def upload_metrics(self, records: Sequence[AnyMetric]) -> Dict[MetricKind, UploadResult]:
        """Upload records to their metric tables, skipping PRs already stored."""
        if not records:
            logger.warning("No metrics to upload")
            return {}

        if self._warehouse_client is None:
            raise DataValidationError("Upload requested without a BigQuery client")

        results: Dict[MetricKind, UploadResult] = {}
        for kind, kind_records in group_by_metric_kind(records).items():
            results[kind] = self._warehouse_client.upload_metrics(
                self._config.bigquery_dataset_id,
                self.table_name_for(kind),
                kind,
                kind_records,
            )
        return results

    def run(self, now: Optional[datetime] = None) -> List[AnyMetric]:
        """Collect metrics, then print or upload them.

        Raises:
            ApiError: After dispatching, if any repository could not be collected.
        """
        logger.info("Starting engineering metrics collection")

        records = self.collect(now=now)

        if self._config.print_only:
            self.print_metrics(records)
        else:
            self.upload_metrics(records)

        if self.failed_repositories:
            raise ApiError(
                "Failed to collect metrics for repositories: " + ", ".join(self.failed_repositories)
            )

        logger.info("Engineering metrics collection completed", extra={"metrics": len(records)})
        return records
