from __future__ import annotations

import math
from dataclasses import replace
from typing import Any, Sequence

from screenstory.errors import DataError
from screenstory.models import CompositionPlan, Segment


def compose_timeline(segments: Sequence[Segment]) -> CompositionPlan:
    """Lay segments end to end in their given (chronological) order.

    Offsets are cumulative: each segment starts where the previous one ends.
    Nothing is reordered here; pacing alone decides how much time a frame gets.
    """

    if not segments:
        raise DataError("Cannot compose a timeline from zero segments.")

    placed: list[Segment] = []
    offset = 0.0
    for segment in segments:
        if not segment.duration > 0 or math.isinf(segment.duration):
            raise DataError(f"Segment for frame {segment.frame.id} has invalid duration {segment.duration!r}.")
        placed.append(replace(segment, start_offset=offset))
        offset += segment.duration

    return CompositionPlan(segments=tuple(placed), total_duration=offset)


def composition_stats(plan: CompositionPlan) -> dict[str, Any]:
    """Summary numbers for logs and the exported plan."""

    relevances = [segment.frame.effective_relevance for segment in plan.segments]
    count = len(plan.segments)
    return {
        "frame_count": count,
        "total_duration": round(plan.total_duration, 3),
        "cropped_count": sum(1 for segment in plan.segments if segment.was_cropped),
        "avg_relevance": round(sum(relevances) / count, 4) if count else 0.0,
        "min_relevance": min(relevances, default=0.0),
        "max_relevance": max(relevances, default=0.0),
    }
