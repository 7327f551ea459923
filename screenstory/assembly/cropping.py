from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Callable, Sequence

from screenstory.errors import CropFailure, PipelineCancelled
from screenstory.models import CropPlan, CropRect, Frame, Segment, WindowBounds

DEFAULT_PADDING = 20
DEFAULT_MIN_WINDOW_SIZE = 100
DEFAULT_MAX_WORKERS = 4

Cropper = Callable[[str, CropRect, Path], Path]

logger = logging.getLogger(__name__)


def plan_crop(
    frame: Frame,
    *,
    padding: int = DEFAULT_PADDING,
    min_window_size: int = DEFAULT_MIN_WINDOW_SIZE,
) -> CropPlan:
    """Decide whether to crop a frame to its window, and to which rectangle.

    The window is first clamped onto the screen, then grown by ``padding`` on
    every side to keep the window shadow, and finally snapped to whole pixels.
    The returned rectangle always lies inside the screen.
    """

    bounds = frame.window_bounds
    if bounds is None or bounds.screen_width <= 0 or bounds.screen_height <= 0:
        return CropPlan(rect=None, reason="no-bounds")
    if bounds.is_fullscreen:
        return CropPlan(rect=None, reason="fullscreen")
    if bounds.width < min_window_size or bounds.height < min_window_size:
        return CropPlan(rect=None, reason="too-small")

    screen_width = bounds.screen_width
    screen_height = bounds.screen_height
    valid_x, valid_y, valid_width, valid_height = visible_window(bounds)

    crop_x = max(0.0, valid_x - padding)
    crop_y = max(0.0, valid_y - padding)
    crop_width = min(valid_width + (padding * 2), screen_width - crop_x)
    crop_height = min(valid_height + (padding * 2), screen_height - crop_y)

    # Round edges rather than sizes so rounding can never push past the screen.
    left = round(crop_x)
    top = round(crop_y)
    right = min(screen_width, round(crop_x + crop_width))
    bottom = min(screen_height, round(crop_y + crop_height))

    if right <= left or bottom <= top:
        return CropPlan(rect=None, reason="too-small")

    return CropPlan(rect=CropRect(x=left, y=top, width=right - left, height=bottom - top), reason="window")


def visible_window(bounds: WindowBounds) -> tuple[float, float, float, float]:
    """Window ``(x, y, width, height)`` shifted and trimmed to lie on screen."""

    x = max(0.0, min(bounds.x, bounds.screen_width - bounds.width))
    y = max(0.0, min(bounds.y, bounds.screen_height - bounds.height))
    return x, y, min(bounds.width, bounds.screen_width - x), min(bounds.height, bounds.screen_height - y)


def crop_to_window(input_path: str, rect: CropRect, output_path: Path) -> Path:
    """Write the ``rect`` region of ``input_path`` to ``output_path`` with OpenCV."""

    import cv2

    image = cv2.imread(str(input_path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise CropFailure(f"Unable to read image for cropping: {input_path}")

    image_height, image_width = image.shape[:2]
    if rect.x + rect.width > image_width or rect.y + rect.height > image_height:
        raise CropFailure(
            f"Crop {rect.width}x{rect.height}+{rect.x}+{rect.y} exceeds image "
            f"{image_width}x{image_height}: {input_path}"
        )

    cropped = image[rect.y : rect.y + rect.height, rect.x : rect.x + rect.width]
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(output_path), cropped):
        raise CropFailure(f"Unable to write cropped image: {output_path}")
    return output_path


def apply_crops(
    segments: Sequence[Segment],
    *,
    output_dir: str | Path,
    cropper: Cropper = crop_to_window,
    padding: int = DEFAULT_PADDING,
    min_window_size: int = DEFAULT_MIN_WINDOW_SIZE,
    max_workers: int = DEFAULT_MAX_WORKERS,
    cancel_event: threading.Event | None = None,
) -> list[Segment]:
    """Crop windowed frames in parallel, falling back to the original per frame.

    A failed crop is logged and never retried; that segment keeps the
    original file with ``was_cropped=False``. Output order matches input.
    """

    resolved_output_dir = Path(output_dir)
    prepared: list[Segment] = list(segments)
    jobs: dict[int, Future[Path]] = {}
    rects: dict[int, CropRect] = {}

    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="crop") as executor:
        for idx, segment in enumerate(segments):
            plan = plan_crop(segment.frame, padding=padding, min_window_size=min_window_size)
            if plan.rect is None:
                logger.debug("Frame %s not cropped (%s)", segment.frame.id, plan.reason)
                continue

            rects[idx] = plan.rect
            output_path = resolved_output_dir / f"cropped_{segment.frame.id}.png"
            jobs[idx] = executor.submit(
                _run_crop,
                cropper,
                segment.frame.file_path,
                plan.rect,
                output_path,
                cancel_event,
            )

        for idx, future in jobs.items():
            segment = prepared[idx]
            try:
                cropped_path = future.result()
            except PipelineCancelled:
                for pending in jobs.values():
                    pending.cancel()
                raise
            except Exception as exc:
                logger.warning("Crop failed for frame %s, using original: %s", segment.frame.id, exc)
                continue
            prepared[idx] = replace(segment, export_path=str(cropped_path), was_cropped=True, crop_rect=rects[idx])

    cropped_count = sum(1 for segment in prepared if segment.was_cropped)
    logger.info("Prepared %d frames (%d cropped)", len(prepared), cropped_count)
    return prepared


def _run_crop(
    cropper: Cropper,
    input_path: str,
    rect: CropRect,
    output_path: Path,
    cancel_event: threading.Event | None,
) -> Path:
    if cancel_event is not None and cancel_event.is_set():
        raise PipelineCancelled("Cropping cancelled.")
    return Path(cropper(input_path, rect, output_path))
