from __future__ import annotations

from collections import Counter
from typing import Any, Sequence

from screenstory.models import Frame, TaskCluster
from screenstory.segmentation.temporal import build_cluster

DEFAULT_GAP_THRESHOLD_SECONDS = 600.0


def cluster_by_time(
    frames: Sequence[Frame],
    *,
    gap_threshold_seconds: float = DEFAULT_GAP_THRESHOLD_SECONDS,
) -> list[TaskCluster]:
    """Group query hits by time proximity for display.

    Unlike task segmentation this ignores app switches, never consults the AI
    judge and never drops frames: every input frame lands in exactly one group.
    """

    if not frames:
        return []

    ordered = sorted(frames, key=lambda frame: (frame.timestamp, frame.frame_number))
    groups: list[list[Frame]] = [[ordered[0]]]

    for prev, curr in zip(ordered, ordered[1:]):
        gap_seconds = (curr.timestamp - prev.timestamp).total_seconds()
        if gap_seconds <= gap_threshold_seconds:
            groups[-1].append(curr)
        else:
            groups.append([curr])

    return [build_cluster(group) for group in groups]


def summarize_results(frames: Sequence[Frame]) -> dict[str, Any]:
    """Summarize a result set: apps, success/error counts, relevance and time span."""

    if not frames:
        return {
            "total": 0,
            "apps": [],
            "success_count": 0,
            "error_count": 0,
            "avg_relevance": 0.0,
            "time_span": None,
        }

    app_counts = Counter(frame.app_name for frame in frames)
    scored = [frame.relevance_score for frame in frames if frame.relevance_score is not None]
    timestamps = sorted(frame.timestamp for frame in frames)
    span_seconds = int((timestamps[-1] - timestamps[0]).total_seconds())

    return {
        "total": len(frames),
        "apps": [
            {"name": name, "count": count}
            for name, count in sorted(app_counts.items(), key=lambda item: (-item[1], item[0]))
        ],
        "success_count": sum(1 for frame in frames if frame.is_success is True),
        "error_count": sum(1 for frame in frames if frame.is_success is False),
        "avg_relevance": sum(scored) / len(scored) if scored else 0.0,
        "time_span": {"total_seconds": span_seconds, "formatted": format_duration(span_seconds)},
    }


def describe_clusters(clusters: Sequence[TaskCluster]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for idx, cluster in enumerate(clusters, start=1):
        first, last = cluster.frames[0], cluster.frames[-1]
        seconds = int(cluster.duration_seconds)
        rows.append(
            {
                "index": idx,
                "name": cluster.name,
                "start_time": cluster.start_time.isoformat(),
                "end_time": cluster.end_time.isoformat(),
                "duration": {"total_seconds": seconds, "formatted": format_duration(seconds)},
                "frame_count": cluster.frame_count,
                "frame_ids": [frame.id for frame in cluster.frames],
                "apps_used": cluster.apps_used,
                "start_summary": first.ai_summary or None,
                "end_summary": (last.ai_summary or None) if cluster.frame_count > 1 else None,
            }
        )
    return rows


def format_duration(total_seconds: float) -> str:
    seconds = max(0, int(total_seconds))
    minutes, seconds = divmod(seconds, 60)
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
