"""BigQuery storage for computed pull request metrics.

Each metric kind has a fixed table definition (schema, day partitioning on the
end-instant column, clustering by PR creator) and a row transform. Uploads are
insert-if-absent by PR number: rows whose key already exists are never
re-inserted, so the first computed value of a metric is permanent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import bigquery

from .errors import ConfigurationError, DataValidationError, WarehouseError
from .models import AnyMetric, FirstReviewMetric, MergeMetric, MetricKind, MetricRecord

logger = logging.getLogger(__name__)


def _timestamp(value: Any) -> str:
    return value.isoformat()


def _first_review_row(record: FirstReviewMetric) -> Dict[str, Any]:
    return {
        "review_date": record.end_date,
        "pr_creator": record.pr_creator,
        "pr_url": record.pr_url,
        "pickup_time_seconds": record.pickup_time_seconds,
        "repository": record.repository,
        "pr_number": record.pr_number,
        "target_branch": record.target_branch,
        "ready_time": _timestamp(record.ready_time),
        "first_review_time": _timestamp(record.first_review_time),
    }


def _merge_row(record: MergeMetric) -> Dict[str, Any]:
    return {
        "merge_date": record.end_date,
        "pr_creator": record.pr_creator,
        "pr_url": record.pr_url,
        "merge_time_seconds": record.merge_time_seconds,
        "repository": record.repository,
        "pr_number": record.pr_number,
        "target_branch": record.target_branch,
        "ready_time": _timestamp(record.ready_time),
        "merge_time": _timestamp(record.merge_time),
    }


@dataclass(frozen=True)
class TableDefinition:
    """Schema, partitioning, clustering and row transform for one metric kind."""

    columns: Tuple[Tuple[str, str], ...]
    partition_field: str
    clustering_fields: Tuple[str, ...]
    to_row: Callable[[Any], Dict[str, Any]]

    def schema(self) -> List[bigquery.SchemaField]:
        return [bigquery.SchemaField(name, field_type, mode="REQUIRED") for name, field_type in self.columns]


TABLE_DEFINITIONS: Dict[MetricKind, TableDefinition] = {
    MetricKind.TIME_TO_FIRST_REVIEW: TableDefinition(
        columns=(
            ("review_date", "DATE"),
            ("pr_creator", "STRING"),
            ("pr_url", "STRING"),
            ("pickup_time_seconds", "INTEGER"),
            ("repository", "STRING"),
            ("pr_number", "INTEGER"),
            ("target_branch", "STRING"),
            ("ready_time", "TIMESTAMP"),
            ("first_review_time", "TIMESTAMP"),
        ),
        partition_field="first_review_time",
        clustering_fields=("pr_creator",),
        to_row=_first_review_row,
    ),
    MetricKind.TIME_TO_MERGE: TableDefinition(
        columns=(
            ("merge_date", "DATE"),
            ("pr_creator", "STRING"),
            ("pr_url", "STRING"),
            ("merge_time_seconds", "INTEGER"),
            ("repository", "STRING"),
            ("pr_number", "INTEGER"),
            ("target_branch", "STRING"),
            ("ready_time", "TIMESTAMP"),
            ("merge_time", "TIMESTAMP"),
        ),
        partition_field="merge_time",
        clustering_fields=("pr_creator",),
        to_row=_merge_row,
    ),
}


def table_definition(kind: MetricKind) -> TableDefinition:
    """Return the table definition for a metric kind.

    Raises:
        DataValidationError: If ``kind`` has no table definition.
    """
    try:
        return TABLE_DEFINITIONS[kind]
    except (KeyError, TypeError) as exc:
        raise DataValidationError(f"Unknown metric kind: {kind!r}") from exc


def transform_record(record: MetricRecord) -> Dict[str, Any]:
    """Transform a metric record to its BigQuery row."""
    kind = getattr(record, "kind", None)
    return table_definition(kind).to_row(record)


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one upload to a metric table."""

    inserted: int
    skipped: int


class BigQueryClient:
    """Thin wrapper around the BigQuery client for metric tables."""

    def __init__(
        self,
        project_id: str,
        credentials_path: Optional[str] = None,
        client: Optional[bigquery.Client] = None,
    ) -> None:
        """Initialize a BigQuery client from a service account key file.

        Raises:
            ConfigurationError: If ``credentials_path`` does not point to a file.
        """
        self._project_id = project_id

        if client is not None:
            self._client = client
            return

        if not credentials_path or not Path(credentials_path).is_file():
            raise ConfigurationError(f"Service account key file not found at {credentials_path}")

        try:
            self._client = bigquery.Client.from_service_account_json(credentials_path, project=project_id)
        except (GoogleAPIError, ValueError) as exc:
            raise WarehouseError(f"Failed to initialize BigQuery client: {exc}") from exc

        logger.info("BigQuery client initialized", extra={"project_id": project_id})

    def _table_ref(self, dataset_id: str, table_id: str) -> str:
        return f"{self._project_id}.{dataset_id}.{table_id}"

    def ensure_table(self, dataset_id: str, table_id: str, kind: MetricKind) -> None:
        """Create the dataset and metric table if they do not exist yet."""
        definition = table_definition(kind)
        table_ref = self._table_ref(dataset_id, table_id)

        try:
            self._client.create_dataset(f"{self._project_id}.{dataset_id}", exists_ok=True)

            table = bigquery.Table(table_ref, schema=definition.schema())
            table.time_partitioning = bigquery.TimePartitioning(
                type_=bigquery.TimePartitioningType.DAY,
                field=definition.partition_field,
            )
            table.clustering_fields = list(definition.clustering_fields)
            self._client.create_table(table, exists_ok=True)
        except GoogleAPIError as exc:
            logger.error("Error creating table", extra={"table": table_ref, "error": str(exc)})
            raise WarehouseError(f"Error creating table {table_ref}: {exc}") from exc

        logger.debug("Table ready", extra={"table": table_ref})

    def find_existing_keys(self, dataset_id: str, table_id: str, keys: Iterable[int]) -> Set[int]:
        """Return the subset of ``keys`` (PR numbers) already stored in the table."""
        key_list = sorted({int(key) for key in keys})
        if not key_list:
            return set()

        table_ref = self._table_ref(dataset_id, table_id)
        query = f"SELECT DISTINCT pr_number FROM `{table_ref}` WHERE pr_number IN UNNEST(@pr_numbers)"
        job_config = bigquery.QueryJobConfig(
            query_parameters=[bigquery.ArrayQueryParameter("pr_numbers", "INT64", key_list)]
        )

        try:
            rows = self._client.query(query, job_config=job_config).result()
        except NotFound:
            return set()
        except GoogleAPIError as exc:
            logger.error("Error checking existing metrics", extra={"table": table_ref, "error": str(exc)})
            raise WarehouseError(f"Error checking existing metrics in {table_ref}: {exc}") from exc

        return {int(row["pr_number"]) for row in rows}

    def insert_rows(
        self,
        dataset_id: str,
        table_id: str,
        rows: Sequence[Dict[str, Any]],
        row_ids: Optional[Sequence[str]] = None,
    ) -> None:
        """Stream rows into the table.

        Raises:
            WarehouseError: If the insert fails or any row is rejected.
        """
        if not rows:
            return

        table_ref = self._table_ref(dataset_id, table_id)
        try:
            errors = self._client.insert_rows_json(table_ref, list(rows), row_ids=row_ids)
        except GoogleAPIError as exc:
            logger.error("Error uploading metrics", extra={"table": table_ref, "error": str(exc)})
            raise WarehouseError(f"Error uploading metrics to {table_ref}: {exc}") from exc

        if errors:
            for error in errors:
                logger.error(
                    "Row insert error",
                    extra={"table": table_ref, "row_index": error.get("index"), "error": error.get("errors")},
                )
            raise WarehouseError(f"Failed to insert {len(errors)} rows into {table_ref}", errors=errors)

    def upload_metrics(
        self,
        dataset_id: str,
        table_id: str,
        kind: MetricKind,
        records: Sequence[AnyMetric],
    ) -> UploadResult:
        """Insert records whose PR number is not yet present in the table.

        Records already stored, and repeats of a PR number within ``records``,
        are skipped; stored rows are never modified.
        """
        if not records:
            logger.warning("No metrics to upload", extra={"table_id": table_id})
            return UploadResult(inserted=0, skipped=0)

        for record in records:
            if getattr(record, "kind", None) is not kind:
                raise DataValidationError(
                    f"Cannot upload {type(record).__name__} to the {kind.value} table"
                )

        self.ensure_table(dataset_id, table_id, kind)
        existing = self.find_existing_keys(dataset_id, table_id, (record.pr_number for record in records))

        new_records: List[AnyMetric] = []
        batch_repositories: Dict[int, str] = {}
        for record in records:
            if record.pr_number in existing:
                logger.debug(
                    "Skipping metric already stored in BigQuery",
                    extra={"table_id": table_id, "repository": record.repository, "pr_number": record.pr_number},
                )
                continue
            if record.pr_number in batch_repositories:
                first_repository = batch_repositories[record.pr_number]
                if first_repository != record.repository:
                    # pr_number is the table key, so the later repository's record is dropped.
                    logger.warning(
                        "PR number collides across repositories, skipping record",
                        extra={
                            "table_id": table_id,
                            "pr_number": record.pr_number,
                            "kept_repository": first_repository,
                            "skipped_repository": record.repository,
                        },
                    )
                continue
            batch_repositories[record.pr_number] = record.repository
            new_records.append(record)

        skipped = len(records) - len(new_records)
        if not new_records:
            logger.info(
                "All metrics already exist in BigQuery, nothing to upload",
                extra={"table_id": table_id, "skipped_rows": skipped},
            )
            return UploadResult(inserted=0, skipped=skipped)

        rows = [transform_record(record) for record in new_records]
        row_ids = [f"{kind.value}:{record.pr_number}" for record in new_records]
        self.insert_rows(dataset_id, table_id, rows, row_ids=row_ids)

        logger.info(
            "Uploaded metrics to BigQuery",
            extra={
                "dataset_id": dataset_id,
                "table_id": table_id,
                "inserted_rows": len(new_records),
                "skipped_rows": skipped,
            },
        )
        return UploadResult(inserted=len(new_records), skipped=skipped)
