from __future__ import annotations

from dataclasses import dataclass


class ScreenStoryError(Exception):
    """Base class for errors raised by the segmentation and assembly core."""


class DataError(ScreenStoryError, ValueError):
    """Input frames are unusable: unsorted, unanalyzed, or otherwise invalid."""


class EmptySelection(ScreenStoryError):
    """The selection mode produced zero frames, so no plan can be rendered."""

    def __init__(self, mode: str, threshold: float, candidate_count: int) -> None:
        self.mode = mode
        self.threshold = threshold
        self.candidate_count = candidate_count
        super().__init__(
            f"No frames selected (mode: {mode}, threshold: {threshold:.2f}, "
            f"{candidate_count} analyzed candidates)."
        )


class CropFailure(ScreenStoryError, RuntimeError):
    """A single frame could not be cropped."""


class PipelineCancelled(ScreenStoryError):
    """Cooperative cancellation was requested between frames or clusters."""


@dataclass(slots=True)
class SegmentationAmbiguity:
    """Non-fatal record of a cluster dropped during AI refinement."""

    cluster_index: int
    frame_count: int
    reason: str
    detail: str = ""
