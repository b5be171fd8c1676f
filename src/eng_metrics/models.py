"""Domain models for GitHub pull request metric collection.

These dataclasses intentionally model only the subset of API payload fields that
are required for metric computation and storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional, Union

from .errors import ConfigurationError

READY_FOR_REVIEW = "ready_for_review"
CONVERT_TO_DRAFT = "convert_to_draft"


class MetricKind(str, Enum):
    """Closed set of tracked pull request metrics."""

    TIME_TO_FIRST_REVIEW = "time_to_first_review"
    TIME_TO_MERGE = "time_to_merge"


class ReadyEventType(str, Enum):
    """Which readiness rule produced a metric's ready instant."""

    CREATION_NOT_DRAFT = "creation_not_draft"
    READY_FOR_REVIEW = "ready_for_review"

    @property
    def label(self) -> str:
        if self is ReadyEventType.CREATION_NOT_DRAFT:
            return "PR creation (not draft)"
        return "ready_for_review event"


@dataclass(frozen=True, slots=True)
class Repository:
    """Represents a GitHub repository identified by owner and name."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "Repository":
        """Parse an ``owner/name`` identifier.

        Raises:
            ConfigurationError: If the identifier is not exactly ``owner/name``.
        """
        if not isinstance(value, str):
            raise ConfigurationError(f"Invalid repository format: {value!r}")

        parts = value.strip().split("/")
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise ConfigurationError(
                f"Invalid repository format: '{value}'. Expected 'owner/repo'."
            )

        return cls(owner=parts[0].strip(), name=parts[1].strip())

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True, slots=True)
class PullRequest:
    """Represents the minimal pull request data required for metric calculations."""

    number: int
    url: str
    creator: str
    source_branch: str
    target_branch: str
    created_at: datetime
    updated_at: datetime
    draft: bool
    merged_at: Optional[datetime]
    repository: Repository


@dataclass(frozen=True, slots=True)
class TimelineEvent:
    """Represents one issue timeline entry; only readiness transitions are used."""

    event: str
    created_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class ReviewEvent:
    """Represents a submitted pull request review."""

    submitted_at: Optional[datetime]
    state: str = ""
    reviewer: str = ""


@dataclass(frozen=True, slots=True)
class ReadyCandidate:
    """A timestamp eligible to be chosen as a metric's ready instant."""

    time: datetime
    event_type: ReadyEventType


@dataclass(frozen=True, slots=True)
class MetricRecord:
    """Common fields of every computed metric.

    ``end_time`` is the first review submission or the merge, depending on
    the concrete metric kind.
    """

    kind: ClassVar[MetricKind]

    repository: str
    pr_number: int
    pr_url: str
    pr_creator: str
    target_branch: str
    ready_time: datetime
    end_time: datetime
    elapsed_seconds: int
    ready_event_type: ReadyEventType

    @property
    def end_date(self) -> str:
        """Calendar date (UTC) of the end instant, formatted ``YYYY-MM-DD``."""
        return self.end_time.astimezone(timezone.utc).date().isoformat()


@dataclass(frozen=True, slots=True)
class FirstReviewMetric(MetricRecord):
    """Time from ready-for-review to the first submitted review."""

    kind: ClassVar[MetricKind] = MetricKind.TIME_TO_FIRST_REVIEW

    @property
    def first_review_time(self) -> datetime:
        return self.end_time

    @property
    def pickup_time_seconds(self) -> int:
        return self.elapsed_seconds


@dataclass(frozen=True, slots=True)
class MergeMetric(MetricRecord):
    """Time from ready-for-review to merge."""

    kind: ClassVar[MetricKind] = MetricKind.TIME_TO_MERGE

    @property
    def merge_time(self) -> datetime:
        return self.end_time

    @property
    def merge_time_seconds(self) -> int:
        return self.elapsed_seconds


AnyMetric = Union[FirstReviewMetric, MergeMetric]
