from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from screenstory.errors import DataError
from screenstory.models import Frame, WindowBounds

logger = logging.getLogger(__name__)

FrameSnapshot = tuple[Frame, ...]


class FrameStore(Protocol):
    """Read side of the capture database, as consumed by the core."""

    def get_frames_for_session(self, session_id: int) -> FrameSnapshot: ...


class JsonFrameStore:
    """Frame store backed by a JSON export of the screenshots table.

    The export is read once; every call returns a fresh, frozen snapshot so
    callers never share a mutable list with the capture process.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._frames = load_frames(self.path)

    def get_frames_for_session(self, session_id: int) -> FrameSnapshot:
        rows = [frame for frame in self._frames if frame.session_id == session_id]
        return tuple(sorted(rows, key=lambda frame: frame.frame_number))

    def session_ids(self) -> list[int]:
        return sorted({frame.session_id for frame in self._frames})


def load_frames(path: str | Path) -> FrameSnapshot:
    """Load a frame snapshot from a JSON array of screenshot rows."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("frames", payload.get("screenshots"))
    if not isinstance(payload, list):
        raise DataError("Frame snapshot must be a JSON array (or an object with a 'frames' array).")

    frames: list[Frame] = []
    for idx, row in enumerate(payload, start=1):
        if not isinstance(row, dict):
            raise DataError(f"Frame row {idx} must be an object.")
        try:
            frames.append(frame_from_row(row))
        except DataError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise DataError(f"Frame row {idx} is invalid: {exc}") from exc

    logger.debug("Loaded %d frames from %s", len(frames), path)
    return tuple(frames)


def frame_from_row(row: dict[str, Any]) -> Frame:
    """Build a frame from one screenshots-table row (flat or nested bounds)."""

    relevance = row.get("relevance_score")
    return Frame(
        id=int(row["id"]),
        session_id=int(row.get("session_id", 0)),
        frame_number=int(row.get("frame_number", row["id"])),
        timestamp=parse_timestamp(row["timestamp"]),
        app_name=str(row.get("app_name") or ""),
        window_title=str(row.get("window_title") or ""),
        file_path=str(row["file_path"]),
        window_bounds=_bounds_from_row(row),
        ocr_text=str(row.get("ocr_text") or ""),
        ai_summary=str(row.get("ai_summary") or ""),
        is_success=_to_tristate(row.get("is_success")),
        relevance_score=float(relevance) if relevance is not None else None,
        tags=frozenset(_parse_tags(row.get("tags"))),
        analyzed=_to_tristate(row.get("analyzed")) is True,
    )


def frame_to_row(frame: Frame) -> dict[str, Any]:
    bounds = frame.window_bounds
    return {
        "id": frame.id,
        "session_id": frame.session_id,
        "frame_number": frame.frame_number,
        "timestamp": frame.timestamp.isoformat(),
        "app_name": frame.app_name,
        "window_title": frame.window_title,
        "file_path": frame.file_path,
        "window_bounds": None
        if bounds is None
        else {
            "x": bounds.x,
            "y": bounds.y,
            "width": bounds.width,
            "height": bounds.height,
            "screen_width": bounds.screen_width,
            "screen_height": bounds.screen_height,
            "is_fullscreen": bounds.is_fullscreen,
        },
        "ocr_text": frame.ocr_text,
        "ai_summary": frame.ai_summary,
        "is_success": frame.is_success,
        "relevance_score": frame.relevance_score,
        "tags": sorted(frame.tags),
        "analyzed": frame.analyzed,
    }


def parse_timestamp(raw_value: Any) -> datetime:
    """Parse a row timestamp into a naive UTC datetime.

    The capture database stores UTC without an offset, so naive values are
    taken as UTC and offset-aware ones are converted to it.
    """

    if isinstance(raw_value, datetime):
        parsed = raw_value
    elif isinstance(raw_value, int | float):
        parsed = datetime.fromtimestamp(raw_value, tz=timezone.utc)
    else:
        text = str(raw_value).strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _bounds_from_row(row: dict[str, Any]) -> WindowBounds | None:
    nested = row.get("window_bounds")
    if isinstance(nested, dict):
        source = nested
        keys = ("x", "y", "width", "height")
    else:
        source = row
        keys = ("window_x", "window_y", "window_width", "window_height")

    x_key, y_key, width_key, height_key = keys
    if source.get(width_key) is None or source.get(height_key) is None:
        return None

    return WindowBounds(
        x=float(source.get(x_key) or 0.0),
        y=float(source.get(y_key) or 0.0),
        width=float(source[width_key]),
        height=float(source[height_key]),
        screen_width=int(source.get("screen_width") or 0),
        screen_height=int(source.get("screen_height") or 0),
        is_fullscreen=bool(source.get("is_fullscreen", False)),
    )


def _to_tristate(raw_value: Any) -> bool | None:
    if raw_value is None:
        return None
    if isinstance(raw_value, str):
        lowered = raw_value.strip().lower()
        if lowered in {"", "null", "none", "unknown"}:
            return None
        return lowered in {"1", "true", "yes"}
    return bool(raw_value)


def _parse_tags(raw_value: Any) -> list[str]:
    if raw_value is None:
        return []
    if isinstance(raw_value, str):
        try:
            decoded = json.loads(raw_value)
        except json.JSONDecodeError:
            return [tag.strip() for tag in raw_value.split(",") if tag.strip()]
        raw_value = decoded
    if not isinstance(raw_value, list):
        return []
    return [str(tag) for tag in raw_value]
