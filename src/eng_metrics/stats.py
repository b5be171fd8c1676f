"""Statistics and formatting helpers for metric reporting.

This module provides utilities for:
- Computing linear-interpolation percentiles from pre-sorted samples.
- Aggregating summary statistics (count, average, P50, P75, P90).
- Formatting second-based durations for console output.
- Building the print-only report for one metric kind.
"""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, cast

from .models import AnyMetric, MetricKind

METRIC_TITLES: Dict[MetricKind, str] = {
    MetricKind.TIME_TO_FIRST_REVIEW: "Time to First Review",
    MetricKind.TIME_TO_MERGE: "Time to Merge",
}

END_TIME_LABELS: Dict[MetricKind, str] = {
    MetricKind.TIME_TO_FIRST_REVIEW: "First Review Time",
    MetricKind.TIME_TO_MERGE: "Merge Time",
}


def calculate_percentile(sorted_values: List[float], p: float) -> Optional[float]:
    """Calculate a percentile using linear interpolation.

    The input sequence is expected to already be sorted in ascending order:
    - Empty input returns ``None``.
    - ``p <= 0`` returns the first value.
    - ``p >= 100`` returns the last value.
    - Otherwise, percentile is linearly interpolated between adjacent ranks.

    Args:
        sorted_values: Sorted numeric samples.
        p: Percentile in the inclusive range ``[0, 100]``.

    Returns:
        Percentile value as ``float`` or ``None`` when input is empty.

    Raises:
        ValueError: If ``p`` is outside ``[0, 100]``.
    """
    if not 0 <= p <= 100:
        raise ValueError("Percentile 'p' must be in the range [0, 100].")

    if not sorted_values:
        return None

    if p <= 0:
        return sorted_values[0]

    if p >= 100:
        return sorted_values[-1]

    position = (len(sorted_values) - 1) * (p / 100.0)
    lower_index = math.floor(position)
    upper_index = math.ceil(position)

    if lower_index == upper_index:
        return sorted_values[int(position)]

    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]
    return lower_value + (upper_value - lower_value) * (position - lower_index)


def compute_statistics(samples: Sequence[float]) -> Dict[str, Optional[float]]:
    """Compute count, average, P50, P75 and P90 for duration samples.

    Samples are sorted internally before percentile calculations. ``None``,
    NaN and negative values are ignored.

    Args:
        samples: Duration samples in seconds.

    Returns:
        Dictionary with keys ``count``, ``average``, ``p50``, ``p75`` and
        ``p90``. The average and percentiles are ``None`` when no valid samples
        exist; ``count`` is always the number of valid samples included.
    """
    clean_samples = sorted(
        float(sample)
        for sample in samples
        if sample is not None and not math.isnan(sample) and sample >= 0
    )

    return {
        "count": cast(Optional[float], len(clean_samples)),
        "average": average(clean_samples),
        "p50": calculate_percentile(clean_samples, 50),
        "p75": calculate_percentile(clean_samples, 75),
        "p90": calculate_percentile(clean_samples, 90),
    }


def average(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as ``HH:MM:SS``.

    Args:
        seconds: Duration in seconds.

    Returns:
        ``"n/a"`` when ``seconds`` is ``None``; otherwise a rounded
        ``HH:MM:SS`` string.
    """
    if seconds is None:
        return "n/a"

    total_seconds = int(round(seconds))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    remaining_seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{remaining_seconds:02d}"


def format_elapsed(seconds: Optional[float]) -> str:
    """Format seconds as ``Xh Ym Zs`` using whole seconds (floored)."""
    if seconds is None:
        return "n/a"

    total_seconds = int(math.floor(seconds))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    remaining_seconds = total_seconds % 60
    return f"{hours}h {minutes}m {remaining_seconds}s"


def generate_report(kind: MetricKind, records: Sequence[AnyMetric]) -> str:
    """Generate the human-readable report for one metric kind.

    Records are listed by elapsed time, longest first, followed by summary
    statistics.
    """
    title = METRIC_TITLES[kind]
    end_label = END_TIME_LABELS[kind]
    ordered = sorted(records, key=lambda record: record.elapsed_seconds, reverse=True)

    lines = [f"=== {title} ===", ""]

    for index, record in enumerate(ordered, start=1):
        lines.extend(
            [
                f"[{index}] PR: {record.repository}#{record.pr_number}",
                f"    URL: {record.pr_url}",
                f"    Creator: {record.pr_creator}",
                f"    Ready Time: {record.ready_time.isoformat()} ({record.ready_event_type.label})",
                f"    {end_label}: {record.end_time.isoformat()}",
                f"    {title}: {format_elapsed(record.elapsed_seconds)} ({record.elapsed_seconds} seconds)",
                "",
            ]
        )

    stats = compute_statistics([record.elapsed_seconds for record in records])
    count = int(cast(float, stats["count"]))
    avg = stats["average"]
    avg_seconds = "n/a" if avg is None else f"{int(math.floor(avg))} seconds"

    lines.extend(
        [
            "=== Summary Statistics ===",
            f"Total PRs: {count}",
            f"Average {title}: {format_elapsed(avg)} ({avg_seconds})",
            f"P50: {format_duration(stats['p50'])}",
            f"P75: {format_duration(stats['p75'])}",
            f"P90: {format_duration(stats['p90'])}",
        ]
    )

    return "\n".join(lines)
