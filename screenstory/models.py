from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from screenstory.errors import DataError

DEFAULT_RELEVANCE = 0.5

OverlayKind = Literal["caption", "timestamp", "success", "progress", "blur"]
CropReason = Literal["window", "fullscreen", "no-bounds", "too-small", "disabled"]


@dataclass(frozen=True, slots=True)
class WindowBounds:
    """Window geometry captured alongside a frame, in screen pixels."""

    x: float
    y: float
    width: float
    height: float
    screen_width: int
    screen_height: int
    is_fullscreen: bool = False


@dataclass(frozen=True, slots=True)
class Frame:
    """One captured screenshot plus its metadata. Snapshots are never mutated."""

    id: int
    session_id: int
    frame_number: int
    timestamp: datetime
    app_name: str
    file_path: str
    window_title: str = ""
    window_bounds: WindowBounds | None = None
    ocr_text: str = ""
    ai_summary: str = ""
    is_success: bool | None = None
    relevance_score: float | None = None
    tags: frozenset[str] = frozenset()
    analyzed: bool = False

    def __post_init__(self) -> None:
        score = self.relevance_score
        if score is None:
            return
        if isinstance(score, bool) or not isinstance(score, int | float):
            raise DataError(f"Frame {self.id}: relevance_score must be a number, got {score!r}.")
        if math.isnan(score) or not 0.0 <= score <= 1.0:
            raise DataError(f"Frame {self.id}: relevance_score {score!r} is outside [0, 1].")

    @property
    def effective_relevance(self) -> float:
        if self.relevance_score is None:
            return DEFAULT_RELEVANCE
        return float(self.relevance_score)


@dataclass(slots=True)
class TaskCluster:
    """A contiguous run of frames, optionally judged as one coherent task."""

    frames: tuple[Frame, ...]
    start_time: datetime
    end_time: datetime
    is_coherent: bool = False
    name: str = ""
    description: str = ""
    success_state: bool | None = None
    relevance: float = DEFAULT_RELEVANCE
    apps_used: list[str] = field(default_factory=list)

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


@dataclass(frozen=True, slots=True)
class CropRect:
    """Integer pixel rectangle, always contained in the source screen."""

    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class CropPlan:
    rect: CropRect | None
    reason: CropReason

    @property
    def should_crop(self) -> bool:
        return self.rect is not None


@dataclass(frozen=True, slots=True)
class Segment:
    """One frame scheduled on the output timeline."""

    frame: Frame
    duration: float
    export_path: str
    start_offset: float = 0.0
    was_cropped: bool = False
    crop_rect: CropRect | None = None

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.duration


@dataclass(frozen=True, slots=True)
class CompositionPlan:
    """Ordered (path, duration, offset) timeline handed to the renderer."""

    segments: tuple[Segment, ...]
    total_duration: float

    def entries(self) -> list[dict[str, Any]]:
        return [
            {
                "path": segment.export_path,
                "duration": segment.duration,
                "start_offset": segment.start_offset,
            }
            for segment in self.segments
        ]


@dataclass(frozen=True, slots=True)
class OverlayRecord:
    """A timed text or bar overlay drawn by the renderer."""

    kind: OverlayKind
    text: str
    start_time: float
    duration: float
    position: str
    style: dict[str, Any] = field(default_factory=dict)
    frame_id: int | None = None
    # Pixel area of the segment image; None covers the whole image.
    region: CropRect | None = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration
