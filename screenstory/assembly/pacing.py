from __future__ import annotations

import math
from typing import Sequence

from screenstory.models import DEFAULT_RELEVANCE, Frame, Segment

DEFAULT_MIN_DURATION = 1.0
DEFAULT_MAX_DURATION = 3.0


def frame_duration(
    relevance: float | None,
    *,
    min_duration: float = DEFAULT_MIN_DURATION,
    max_duration: float = DEFAULT_MAX_DURATION,
) -> float:
    """Map relevance to on-screen seconds; higher relevance never gets less time."""

    _validate_bounds(min_duration, max_duration)
    if relevance is None or math.isnan(relevance):
        relevance = DEFAULT_RELEVANCE

    weight = _clamp(relevance)
    duration = min_duration + (max_duration - min_duration) * weight
    return _clamp(duration, min_duration, max_duration)


def pace_frames(
    frames: Sequence[Frame],
    *,
    min_duration: float = DEFAULT_MIN_DURATION,
    max_duration: float = DEFAULT_MAX_DURATION,
) -> list[Segment]:
    """Wrap selected frames as uncropped segments carrying their paced duration."""

    return [
        Segment(
            frame=frame,
            duration=frame_duration(frame.relevance_score, min_duration=min_duration, max_duration=max_duration),
            export_path=frame.file_path,
        )
        for frame in frames
    ]


def _validate_bounds(min_duration: float, max_duration: float) -> None:
    if min_duration <= 0:
        raise ValueError(f"min_duration must be positive, got {min_duration}.")
    if max_duration < min_duration:
        raise ValueError(f"max_duration ({max_duration}) must be >= min_duration ({min_duration}).")


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))
