from __future__ import annotations

import logging
import re
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from screenstory.errors import DataError, PipelineCancelled, SegmentationAmbiguity
from screenstory.models import Frame, TaskCluster
from screenstory.segmentation.cluster_judge import ClusterJudge, Parsed, ParseError

DEFAULT_TIME_GAP_THRESHOLD_SECONDS = 300.0
DEFAULT_APP_SWITCH_WEIGHT = 0.5
DEFAULT_MIN_CLUSTER_FRAMES = 3
DEFAULT_MAX_SAMPLES = 5

STOP_WORDS = frozenset(
    {"the", "and", "for", "with", "this", "that", "from", "have", "has", "been", "were", "was", "are", "its"}
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SegmentationReport:
    """Coherent tasks plus an account of every cluster that was dropped."""

    tasks: list[TaskCluster]
    raw_cluster_count: int
    dropped_too_small: int = 0
    dropped_incoherent: int = 0
    dropped_ai_failure: int = 0
    ambiguities: list[SegmentationAmbiguity] = field(default_factory=list)

    @property
    def dropped_total(self) -> int:
        return self.dropped_too_small + self.dropped_incoherent + self.dropped_ai_failure


def segment_frames(
    frames: Sequence[Frame],
    *,
    time_gap_threshold_seconds: float = DEFAULT_TIME_GAP_THRESHOLD_SECONDS,
    app_switch_weight: float = DEFAULT_APP_SWITCH_WEIGHT,
) -> list[TaskCluster]:
    """Split a timestamp-ordered frame stream on time gaps and app switches.

    A new cluster starts when the gap to the previous frame exceeds the
    threshold, or when the app changed and the gap exceeds
    ``threshold * app_switch_weight``.
    """

    ensure_chronological(frames)
    if not frames:
        return []

    app_switch_threshold = time_gap_threshold_seconds * app_switch_weight
    groups: list[list[Frame]] = [[frames[0]]]

    for prev, curr in zip(frames, frames[1:]):
        gap_seconds = (curr.timestamp - prev.timestamp).total_seconds()
        app_changed = prev.app_name != curr.app_name

        if gap_seconds > time_gap_threshold_seconds or (app_changed and gap_seconds > app_switch_threshold):
            groups.append([curr])
        else:
            groups[-1].append(curr)

    return [build_cluster(group) for group in groups]


def detect_tasks(
    frames: Sequence[Frame],
    judge: ClusterJudge,
    *,
    time_gap_threshold_seconds: float = DEFAULT_TIME_GAP_THRESHOLD_SECONDS,
    app_switch_weight: float = DEFAULT_APP_SWITCH_WEIGHT,
    min_cluster_frames: int = DEFAULT_MIN_CLUSTER_FRAMES,
    max_samples: int = DEFAULT_MAX_SAMPLES,
    cancel_event: threading.Event | None = None,
) -> SegmentationReport:
    """Segment a whole session and keep only clusters the judge calls coherent."""

    raw_clusters = segment_frames(
        frames,
        time_gap_threshold_seconds=time_gap_threshold_seconds,
        app_switch_weight=app_switch_weight,
    )
    return refine_clusters(
        raw_clusters,
        judge,
        min_cluster_frames=min_cluster_frames,
        max_samples=max_samples,
        cancel_event=cancel_event,
    )


def refine_clusters(
    clusters: Sequence[TaskCluster],
    judge: ClusterJudge,
    *,
    min_cluster_frames: int = DEFAULT_MIN_CLUSTER_FRAMES,
    max_samples: int = DEFAULT_MAX_SAMPLES,
    cancel_event: threading.Event | None = None,
) -> SegmentationReport:
    report = SegmentationReport(tasks=[], raw_cluster_count=len(clusters))

    for index, cluster in enumerate(clusters):
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled(f"Task detection cancelled after {index}/{len(clusters)} clusters.")

        if cluster.frame_count < min_cluster_frames:
            report.dropped_too_small += 1
            report.ambiguities.append(
                SegmentationAmbiguity(index, cluster.frame_count, "too-small", f"< {min_cluster_frames} frames")
            )
            continue

        try:
            result = judge(sample_frames(cluster.frames, max_samples=max_samples))
        except PipelineCancelled:
            raise
        except Exception as exc:
            logger.warning("Judge raised on cluster %d: %s", index, exc)
            result = ParseError(reason=f"{type(exc).__name__}: {exc}")

        if not isinstance(result, Parsed):
            report.dropped_ai_failure += 1
            report.ambiguities.append(SegmentationAmbiguity(index, cluster.frame_count, "ai-failure", result.reason))
            logger.info("Cluster %d dropped: judgment unavailable (%s)", index, result.reason)
            continue

        judgment = result.judgment
        if not judgment.is_coherent_task:
            report.dropped_incoherent += 1
            report.ambiguities.append(
                SegmentationAmbiguity(index, cluster.frame_count, "incoherent", judgment.description)
            )
            continue

        report.tasks.append(
            TaskCluster(
                frames=cluster.frames,
                start_time=cluster.start_time,
                end_time=cluster.end_time,
                is_coherent=True,
                name=judgment.task_name,
                description=judgment.description,
                success_state=judgment.success,
                relevance=judgment.relevance,
                apps_used=list(cluster.apps_used),
            )
        )

    if report.dropped_ai_failure:
        logger.warning(
            "%d of %d clusters excluded because the AI judgment was unavailable.",
            report.dropped_ai_failure,
            report.raw_cluster_count,
        )
    logger.info(
        "Detected %d tasks from %d clusters (%d too small, %d incoherent, %d AI failures)",
        len(report.tasks),
        report.raw_cluster_count,
        report.dropped_too_small,
        report.dropped_incoherent,
        report.dropped_ai_failure,
    )
    return report


def sample_frames(frames: Sequence[Frame], max_samples: int = DEFAULT_MAX_SAMPLES) -> list[Frame]:
    """Pick up to ``max_samples`` evenly spaced frames, starting at the first."""

    if max_samples <= 0:
        return []
    if len(frames) <= max_samples:
        return list(frames)

    step = len(frames) // max_samples
    return [frames[i * step] for i in range(max_samples)]


def build_cluster(frames: Sequence[Frame]) -> TaskCluster:
    ordered = tuple(frames)
    if not ordered:
        raise DataError("Cannot build a cluster from zero frames.")

    return TaskCluster(
        frames=ordered,
        start_time=ordered[0].timestamp,
        end_time=ordered[-1].timestamp,
        name=generate_task_name(ordered),
        relevance=sum(frame.effective_relevance for frame in ordered) / len(ordered),
        apps_used=unique_apps(ordered),
    )


def ensure_chronological(frames: Sequence[Frame]) -> None:
    for idx in range(1, len(frames)):
        if frames[idx].timestamp < frames[idx - 1].timestamp:
            raise DataError(
                f"Frames must be sorted by timestamp: frame {frames[idx].id} "
                f"({frames[idx].timestamp.isoformat()}) is listed after frame {frames[idx - 1].id} "
                f"({frames[idx - 1].timestamp.isoformat()})."
            )


def unique_apps(frames: Sequence[Frame]) -> list[str]:
    return list(dict.fromkeys(frame.app_name for frame in frames))


def generate_task_name(frames: Sequence[Frame], max_keywords: int = 3) -> str:
    """Derive a ``task-<kw>-<kw>`` label from the most common tags and summary words."""

    keywords: Counter[str] = Counter()
    for frame in frames:
        keywords.update(sorted(frame.tags))
        words = frame.ai_summary.lower().split()
        keywords.update(word for word in words if len(word) > 3 and word not in STOP_WORDS)

    # most_common keeps first-seen order among ties.
    top = [word for word, _ in keywords.most_common(max_keywords)]
    slug = re.sub(r"[^a-z0-9-]", "", "-".join(top).lower())
    return f"task-{slug}" if slug.strip("-") else "task-unknown"
