from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable

import pytest

from screenstory.models import Frame, WindowBounds

BASE_TIME = datetime(2026, 2, 11, 9, 0, 0)


@pytest.fixture
def make_frame() -> Callable[..., Frame]:
    """Factory for analyzed frames; ``offset`` is seconds after BASE_TIME."""

    def _make(
        frame_id: int = 1,
        *,
        offset: float = 0.0,
        app: str = "Terminal",
        relevance: float | None = 0.5,
        analyzed: bool = True,
        summary: str = "",
        is_success: bool | None = None,
        bounds: WindowBounds | None = None,
        tags: frozenset[str] = frozenset(),
        session_id: int = 1,
        **overrides: Any,
    ) -> Frame:
        values: dict[str, Any] = {
            "id": frame_id,
            "session_id": session_id,
            "frame_number": frame_id,
            "timestamp": BASE_TIME + timedelta(seconds=offset),
            "app_name": app,
            "file_path": f"/tmp/frames/frame_{frame_id:04d}.png",
            "window_bounds": bounds,
            "ai_summary": summary,
            "is_success": is_success,
            "relevance_score": relevance,
            "tags": tags,
            "analyzed": analyzed,
        }
        values.update(overrides)
        return Frame(**values)

    return _make
