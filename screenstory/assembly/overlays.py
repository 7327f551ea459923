from __future__ import annotations

from dataclasses import dataclass, field

from screenstory.assembly.cropping import visible_window
from screenstory.config import DEFAULT_BLUR_RULES, OverlaySettings
from screenstory.models import CompositionPlan, CropRect, OverlayRecord, Segment

DEFAULT_SUCCESS_RELEVANCE_THRESHOLD = 0.8
SUCCESS_TEXT = "✓ SUCCESS"

CAPTION_STYLE = {"font_size": 36, "font_color": "white", "background_color": "black@0.8"}
TIMESTAMP_STYLE = {"font_size": 24, "font_color": "white@0.7", "background_color": "transparent"}
SUCCESS_STYLE = {"font_size": 32, "font_color": "lime", "background_color": "black@0.7"}
PROGRESS_STYLE = {"height": 5, "color": "orange", "background_color": "black@0.3"}
BLUR_AMOUNT = 20
DEFAULT_BLUR_TOP_BAR_HEIGHT = 100


@dataclass(slots=True)
class OverlayOptions:
    captions: bool = True
    timestamps: bool = True
    success_indicators: bool = True
    progress_bar: bool = True
    # Independent of the hero selection threshold.
    success_relevance_threshold: float = DEFAULT_SUCCESS_RELEVANCE_THRESHOLD
    timestamp_format: str = "%H:%M:%S"
    privacy_blur: bool = True
    blur_method: str = "block"
    blur_top_bar_height: int = DEFAULT_BLUR_TOP_BAR_HEIGHT
    blur_rules: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_BLUR_RULES))

    @classmethod
    def from_settings(cls, settings: OverlaySettings) -> "OverlayOptions":
        return cls(
            captions=settings.captions,
            timestamps=settings.timestamps,
            success_indicators=settings.success_indicators,
            progress_bar=settings.progress_bar,
            success_relevance_threshold=settings.success_relevance_threshold,
            timestamp_format=settings.timestamp_format,
            privacy_blur=settings.privacy_blur,
            blur_method=settings.blur_method,
            blur_top_bar_height=settings.blur_top_bar_height,
            blur_rules=dict(settings.blur_rules),
        )


def schedule_overlays(plan: CompositionPlan, options: OverlayOptions | None = None) -> list[OverlayRecord]:
    """Emit blur, caption, timestamp and success overlays per segment, plus one progress bar.

    Per-segment overlays share their segment's window exactly, so none of
    them outlives the frame it annotates.
    """

    resolved = options or OverlayOptions()
    overlays: list[OverlayRecord] = []

    for segment in plan.segments:
        overlays.extend(_segment_overlays(segment, resolved))

    if resolved.progress_bar and plan.segments:
        overlays.append(
            OverlayRecord(
                kind="progress",
                text="",
                start_time=0.0,
                duration=plan.total_duration,
                position="bottom",
                style=dict(PROGRESS_STYLE),
            )
        )

    return overlays


def _segment_overlays(segment: Segment, options: OverlayOptions) -> list[OverlayRecord]:
    frame = segment.frame
    window = {"start_time": segment.start_offset, "duration": segment.duration, "frame_id": frame.id}
    records: list[OverlayRecord] = []

    rule = _blur_rule(frame.app_name, options.blur_rules) if options.privacy_blur else None
    if rule is not None:
        records.append(
            OverlayRecord(
                kind="blur",
                text="",
                position=rule,
                style={"method": options.blur_method, "amount": BLUR_AMOUNT},
                region=blur_region(segment, rule, top_bar_height=options.blur_top_bar_height),
                **window,
            )
        )

    summary = frame.ai_summary.strip()
    if options.captions and summary:
        records.append(OverlayRecord(kind="caption", text=summary, position="bottom", style=dict(CAPTION_STYLE), **window))

    if options.timestamps:
        records.append(
            OverlayRecord(
                kind="timestamp",
                text=frame.timestamp.strftime(options.timestamp_format),
                position="top-left",
                style=dict(TIMESTAMP_STYLE),
                **window,
            )
        )

    if (
        options.success_indicators
        and frame.is_success is True
        and frame.effective_relevance >= options.success_relevance_threshold
    ):
        records.append(OverlayRecord(kind="success", text=SUCCESS_TEXT, position="top-right", style=dict(SUCCESS_STYLE), **window))

    return records


def blur_region(segment: Segment, rule: str, *, top_bar_height: int = DEFAULT_BLUR_TOP_BAR_HEIGHT) -> CropRect | None:
    """Area to mask in the segment's exported image, or None for the whole image.

    Coordinates follow the exported file: when the frame was cropped they are
    relative to the crop rectangle, otherwise to the full screen. Frames
    without usable window geometry are masked entirely.
    """

    bounds = segment.frame.window_bounds
    if bounds is None or bounds.screen_width <= 0 or bounds.screen_height <= 0:
        return None

    x, y, width, height = visible_window(bounds)
    if rule == "top-bar":
        height = min(height, top_bar_height)

    crop = segment.crop_rect
    origin_x, origin_y = (crop.x, crop.y) if crop is not None else (0, 0)
    image_width, image_height = (crop.width, crop.height) if crop is not None else (bounds.screen_width, bounds.screen_height)

    left = max(0, round(x) - origin_x)
    top = max(0, round(y) - origin_y)
    right = min(image_width, round(x + width) - origin_x)
    bottom = min(image_height, round(y + height) - origin_y)
    if right <= left or bottom <= top:
        return None
    return CropRect(x=left, y=top, width=right - left, height=bottom - top)


def _blur_rule(app_name: str, rules: dict[str, str]) -> str | None:
    wanted = app_name.strip().casefold()
    for name, rule in rules.items():
        if name.casefold() == wanted:
            return rule
    return None
