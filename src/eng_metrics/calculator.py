"""Interval calculation for GitHub pull request metrics.

This module turns one pull request's lifecycle events into metric records:
- Time to first review (ready for review to first submitted review)
- Time to merge (ready for review to merge)

The ready instant is the latest readiness candidate strictly earlier than the
metric's end instant. Candidates are every ``ready_for_review`` timeline event
plus the creation time of PRs that were not opened as drafts. All functions
here are pure: a PR that cannot be scored yields ``None``, never an exception.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import DataValidationError
from .models import (
    READY_FOR_REVIEW,
    AnyMetric,
    FirstReviewMetric,
    MergeMetric,
    MetricKind,
    PullRequest,
    ReadyCandidate,
    ReadyEventType,
    ReviewEvent,
    TimelineEvent,
)

logger = logging.getLogger(__name__)


def _require_pull_request(pr: PullRequest) -> None:
    if not isinstance(pr, PullRequest):
        raise DataValidationError(
            f"Expected a PullRequest instance, got {type(pr).__name__}"
        )


def collect_ready_candidates(
    pr: PullRequest,
    timeline_events: Iterable[TimelineEvent],
) -> List[ReadyCandidate]:
    """Return every readiness candidate for ``pr``, sorted ascending by time.

    Timeline entries of any kind other than ``ready_for_review`` are ignored,
    as are entries without a timestamp. When the PR is not a draft its
    creation time is added as a ``creation_not_draft`` candidate.
    """
    _require_pull_request(pr)

    candidates = [
        ReadyCandidate(time=event.created_at, event_type=ReadyEventType.READY_FOR_REVIEW)
        for event in timeline_events
        if event.event == READY_FOR_REVIEW and event.created_at is not None
    ]

    if not pr.draft:
        candidates.append(
            ReadyCandidate(time=pr.created_at, event_type=ReadyEventType.CREATION_NOT_DRAFT)
        )

    # Stable sort: among equal timestamps the earlier-listed candidate stays first.
    candidates.sort(key=lambda candidate: candidate.time)
    return candidates


def select_ready_candidate(
    candidates: Sequence[ReadyCandidate],
    end_time: datetime,
) -> Optional[ReadyCandidate]:
    """Pick the latest candidate strictly earlier than ``end_time``.

    ``candidates`` must be sorted ascending. Returns ``None`` when no
    candidate precedes the end instant.
    """
    selected: Optional[ReadyCandidate] = None
    for candidate in candidates:
        if candidate.time < end_time:
            selected = candidate
    return selected


def first_review_time(review_events: Iterable[ReviewEvent]) -> Optional[datetime]:
    """Return the earliest review submission time, whatever the review state.

    Reviews without a submission time (pending reviews) are ignored.
    """
    submitted = sorted(
        review.submitted_at for review in review_events if review.submitted_at is not None
    )
    if not submitted:
        return None
    return submitted[0]


def _elapsed_seconds(ready_time: datetime, end_time: datetime) -> int:
    return math.floor((end_time - ready_time).total_seconds())


def _resolve_interval(
    pr: PullRequest,
    timeline_events: Iterable[TimelineEvent],
    end_time: datetime,
    kind: MetricKind,
) -> Optional[Tuple[ReadyCandidate, int]]:
    """Resolve the ready candidate and elapsed seconds for an end instant.

    Returns ``(candidate, elapsed_seconds)`` or ``None`` when unscoreable.
    """
    candidates = collect_ready_candidates(pr, timeline_events)
    if not candidates:
        logger.debug(
            "No ready_for_review events found",
            extra={"pr_url": pr.url, "metric": kind.value},
        )
        return None

    candidate = select_ready_candidate(candidates, end_time)
    if candidate is None:
        logger.debug(
            "No readiness candidate precedes the end instant",
            extra={"pr_url": pr.url, "metric": kind.value, "end_time": end_time.isoformat()},
        )
        return None

    elapsed = _elapsed_seconds(candidate.time, end_time)
    if elapsed < 0:
        logger.debug(
            "Skipping metric due to negative duration",
            extra={"pr_url": pr.url, "metric": kind.value, "elapsed_seconds": elapsed},
        )
        return None

    return candidate, elapsed


def calculate_time_to_first_review(
    pr: PullRequest,
    timeline_events: Iterable[TimelineEvent],
    review_events: Iterable[ReviewEvent],
) -> Optional[FirstReviewMetric]:
    """Compute time to first review for a pull request.

    Business logic:
    - End instant is the earliest review submission; approvals, comments and
      change requests all count equally.
    - Ready instant is the latest readiness candidate strictly before it.
    - Elapsed time is whole wall-clock seconds, floored.

    Returns ``None`` when the PR has no reviews, no readiness candidate, or no
    candidate preceding the first review.
    """
    _require_pull_request(pr)

    end_time = first_review_time(review_events)
    if end_time is None:
        logger.debug(
            "No review events found",
            extra={"pr_url": pr.url, "metric": MetricKind.TIME_TO_FIRST_REVIEW.value},
        )
        return None

    resolved = _resolve_interval(pr, timeline_events, end_time, MetricKind.TIME_TO_FIRST_REVIEW)
    if resolved is None:
        return None
    candidate, elapsed = resolved

    return FirstReviewMetric(
        repository=pr.repository.full_name,
        pr_number=pr.number,
        pr_url=pr.url,
        pr_creator=pr.creator,
        target_branch=pr.target_branch,
        ready_time=candidate.time,
        end_time=end_time,
        elapsed_seconds=elapsed,
        ready_event_type=candidate.event_type,
    )


def calculate_time_to_merge(
    pr: PullRequest,
    timeline_events: Iterable[TimelineEvent],
) -> Optional[MergeMetric]:
    """Compute time to merge (ready for review to merge) in seconds.

    Returns ``None`` for unmerged PRs and for PRs without a readiness
    candidate preceding the merge.
    """
    _require_pull_request(pr)

    if pr.merged_at is None:
        return None

    resolved = _resolve_interval(pr, timeline_events, pr.merged_at, MetricKind.TIME_TO_MERGE)
    if resolved is None:
        return None
    candidate, elapsed = resolved

    return MergeMetric(
        repository=pr.repository.full_name,
        pr_number=pr.number,
        pr_url=pr.url,
        pr_creator=pr.creator,
        target_branch=pr.target_branch,
        ready_time=candidate.time,
        end_time=pr.merged_at,
        elapsed_seconds=elapsed,
        ready_event_type=candidate.event_type,
    )


def calculate_metric(
    kind: MetricKind,
    pr: PullRequest,
    timeline_events: Sequence[TimelineEvent],
    review_events: Sequence[ReviewEvent],
) -> Optional[AnyMetric]:
    """Compute the metric of the given kind, or ``None`` when unscoreable.

    Raises:
        DataValidationError: If ``kind`` is not a known metric kind.
    """
    if kind is MetricKind.TIME_TO_FIRST_REVIEW:
        return calculate_time_to_first_review(pr, timeline_events, review_events)
    if kind is MetricKind.TIME_TO_MERGE:
        return calculate_time_to_merge(pr, timeline_events)
    raise DataValidationError(f"Unknown metric kind: {kind!r}")
