from __future__ import annotations

import logging
from typing import Literal, Sequence

from screenstory.models import Frame

SelectionMode = Literal["all", "hero", "super-hero", "custom"]

DEFAULT_HERO_THRESHOLD = 0.7
DEFAULT_SUPER_HERO_THRESHOLD = 0.8

logger = logging.getLogger(__name__)


def resolve_threshold(
    mode: str,
    custom_threshold: float | None = None,
    *,
    hero_threshold: float = DEFAULT_HERO_THRESHOLD,
    super_hero_threshold: float = DEFAULT_SUPER_HERO_THRESHOLD,
) -> float:
    """Map a selection mode to its minimum relevance."""

    normalized_mode = normalize_mode(mode)
    if normalized_mode == "all":
        return 0.0
    if normalized_mode == "hero":
        return hero_threshold
    if normalized_mode == "super-hero":
        return super_hero_threshold

    if custom_threshold is None:
        raise ValueError("Selection mode 'custom' requires a custom threshold.")
    if not 0.0 <= custom_threshold <= 1.0:
        raise ValueError(f"Custom threshold must be in [0, 1], got {custom_threshold}.")
    return float(custom_threshold)


def select_frames(
    frames: Sequence[Frame],
    mode: str = "hero",
    custom_threshold: float | None = None,
    *,
    hero_threshold: float = DEFAULT_HERO_THRESHOLD,
    super_hero_threshold: float = DEFAULT_SUPER_HERO_THRESHOLD,
) -> list[Frame]:
    """Keep analyzed frames at or above the mode's threshold, oldest first.

    Unanalyzed frames are excluded in every mode, including ``all``. Frames
    without a score count as 0.5.
    """

    threshold = resolve_threshold(
        mode,
        custom_threshold,
        hero_threshold=hero_threshold,
        super_hero_threshold=super_hero_threshold,
    )

    selected = [
        frame
        for frame in frames
        if frame.analyzed and frame.effective_relevance >= threshold
    ]
    selected.sort(key=lambda frame: (frame.timestamp, frame.frame_number))

    logger.info("Selected %d/%d frames (mode: %s, threshold: %.2f)", len(selected), len(frames), mode, threshold)
    return selected


def normalize_mode(mode: str) -> SelectionMode:
    normalized = mode.lower().strip().replace("_", "-")
    if normalized == "superhero":
        normalized = "super-hero"
    if normalized not in {"all", "hero", "super-hero", "custom"}:
        msg = (
            f"Unsupported selection mode '{mode}'. "
            "Expected one of: all, hero, super-hero, custom."
        )
        raise ValueError(msg)
    return normalized  # type: ignore[return-value]
