from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from screenstory.assembly.composer import composition_stats, compose_timeline
from screenstory.assembly.cropping import Cropper, apply_crops, crop_to_window
from screenstory.assembly.overlays import OverlayOptions, schedule_overlays
from screenstory.assembly.pacing import pace_frames
from screenstory.assembly.selector import resolve_threshold, select_frames
from screenstory.config import Settings
from screenstory.errors import DataError, EmptySelection
from screenstory.models import CompositionPlan, Frame, OverlayRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AssemblyResult:
    """The two objects handed to the renderer, plus summary stats."""

    plan: CompositionPlan
    overlays: list[OverlayRecord]
    stats: dict[str, Any]


def assemble_composition(
    frames: Sequence[Frame],
    *,
    mode: str = "hero",
    custom_threshold: float | None = None,
    hero_threshold: float = 0.7,
    super_hero_threshold: float = 0.8,
    min_duration: float = 1.0,
    max_duration: float = 3.0,
    crop_dir: str | Path | None = None,
    cropper: Cropper = crop_to_window,
    crop_padding: int = 20,
    min_window_size: int = 100,
    crop_workers: int = 4,
    overlay_options: OverlayOptions | None = None,
    cancel_event: threading.Event | None = None,
) -> AssemblyResult:
    """Select, pace, crop, compose and annotate a frame snapshot.

    Cropping runs only when ``crop_dir`` is given. Raises ``DataError`` when
    the snapshot holds no analyzed frames and ``EmptySelection`` when the mode
    filters every analyzed frame out; no plan is produced in either case.
    """

    analyzed_count = sum(1 for frame in frames if frame.analyzed)
    if analyzed_count == 0:
        raise DataError(f"No analyzed frames among {len(frames)} frames; run analysis first.")

    threshold = resolve_threshold(
        mode,
        custom_threshold,
        hero_threshold=hero_threshold,
        super_hero_threshold=super_hero_threshold,
    )
    selected = select_frames(
        frames,
        mode,
        custom_threshold,
        hero_threshold=hero_threshold,
        super_hero_threshold=super_hero_threshold,
    )
    if not selected:
        raise EmptySelection(mode=mode, threshold=threshold, candidate_count=analyzed_count)

    segments = pace_frames(selected, min_duration=min_duration, max_duration=max_duration)

    if crop_dir is not None:
        segments = apply_crops(
            segments,
            output_dir=crop_dir,
            cropper=cropper,
            padding=crop_padding,
            min_window_size=min_window_size,
            max_workers=crop_workers,
            cancel_event=cancel_event,
        )

    plan = compose_timeline(segments)
    overlays = schedule_overlays(plan, overlay_options)

    stats = {
        **composition_stats(plan),
        "mode": mode,
        "threshold": threshold,
        "candidate_count": len(frames),
        "analyzed_count": analyzed_count,
        "overlay_count": len(overlays),
    }
    logger.info(
        "Composed %d frames into %.1fs (%d cropped, %d overlays)",
        stats["frame_count"],
        plan.total_duration,
        stats["cropped_count"],
        len(overlays),
    )
    return AssemblyResult(plan=plan, overlays=overlays, stats=stats)


def assemble_from_settings(
    frames: Sequence[Frame],
    settings: Settings,
    *,
    mode: str | None = None,
    custom_threshold: float | None = None,
    crop_dir: str | Path | None = None,
    cropper: Cropper = crop_to_window,
    cancel_event: threading.Event | None = None,
) -> AssemblyResult:
    """Run ``assemble_composition`` with typed settings; arguments override config."""

    selection = settings.selection
    cropping = settings.cropping
    resolved_crop_dir = crop_dir if cropping.enabled else None

    return assemble_composition(
        frames,
        mode=mode or selection.mode,
        custom_threshold=custom_threshold if custom_threshold is not None else selection.custom_threshold,
        hero_threshold=selection.hero_threshold,
        super_hero_threshold=selection.super_hero_threshold,
        min_duration=settings.pacing.min_duration,
        max_duration=settings.pacing.max_duration,
        crop_dir=resolved_crop_dir,
        cropper=cropper,
        crop_padding=cropping.padding,
        min_window_size=cropping.min_window_size,
        crop_workers=cropping.max_workers,
        overlay_options=OverlayOptions.from_settings(settings.overlays),
        cancel_event=cancel_event,
    )
