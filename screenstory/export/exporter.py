from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

from screenstory.models import CompositionPlan, OverlayRecord, TaskCluster
from screenstory.pipeline import AssemblyResult
from screenstory.segmentation.temporal import SegmentationReport
from screenstory.store import frame_to_row


def export_composition(
    result: AssemblyResult,
    output_dir: str | Path,
    *,
    basename: str = "composition",
    include_concat_list: bool = True,
) -> dict[str, Path]:
    """Write the composition plan and overlay schedule as JSON for the renderer."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    plan_path = resolved_output_dir / f"{basename}_plan.json"
    overlays_path = resolved_output_dir / f"{basename}_overlays.json"

    _write_json(plan_path, plan_to_payload(result.plan, stats=result.stats))
    _write_json(overlays_path, overlays_to_payload(result.overlays))
    exported = {"plan": plan_path, "overlays": overlays_path}

    if include_concat_list:
        concat_path = resolved_output_dir / f"{basename}_concat.txt"
        concat_path.write_text(build_concat_listing(result.plan), encoding="utf-8")
        exported["concat"] = concat_path

    return exported


def plan_to_payload(plan: CompositionPlan, *, stats: dict[str, Any] | None = None) -> dict[str, Any]:
    segments = []
    for index, (segment, entry) in enumerate(zip(plan.segments, plan.entries()), start=1):
        segments.append(
            {
                "index": index,
                **entry,
                "frame_id": segment.frame.id,
                "was_cropped": segment.was_cropped,
                "crop_rect": asdict(segment.crop_rect) if segment.crop_rect is not None else None,
                "frame": frame_to_row(segment.frame),
            }
        )

    payload: dict[str, Any] = {
        "total_duration": round(plan.total_duration, 6),
        "segments": segments,
    }
    if stats is not None:
        payload["stats"] = stats
    return payload


def overlays_to_payload(overlays: list[OverlayRecord]) -> list[dict[str, Any]]:
    return [asdict(overlay) for overlay in overlays]


def tasks_to_payload(report: SegmentationReport) -> dict[str, Any]:
    return {
        "task_count": len(report.tasks),
        "raw_cluster_count": report.raw_cluster_count,
        "dropped": {
            "too_small": report.dropped_too_small,
            "incoherent": report.dropped_incoherent,
            "ai_failure": report.dropped_ai_failure,
        },
        "tasks": [task_to_payload(task) for task in report.tasks],
        "ambiguities": [asdict(item) for item in report.ambiguities],
    }


def task_to_payload(task: TaskCluster) -> dict[str, Any]:
    return {
        "name": task.name,
        "description": task.description,
        "is_coherent": task.is_coherent,
        "success": task.success_state,
        "relevance": task.relevance,
        "start_time": task.start_time.isoformat(),
        "end_time": task.end_time.isoformat(),
        "duration_seconds": task.duration_seconds,
        "frame_count": task.frame_count,
        "frame_ids": [frame.id for frame in task.frames],
        "apps_used": task.apps_used,
    }


def build_concat_listing(plan: CompositionPlan) -> str:
    """Render the plan in ffmpeg concat-demuxer syntax (``file``/``duration`` pairs)."""

    if not plan.segments:
        return ""

    lines: list[str] = []
    for segment in plan.segments:
        lines.append(f"file {_quote_concat_path(segment.export_path)}")
        lines.append(f"duration {segment.duration:.3f}")
    # The demuxer ignores the last duration unless the final file is repeated.
    lines.append(f"file {_quote_concat_path(plan.segments[-1].export_path)}")
    return "\n".join(lines) + "\n"


def _quote_concat_path(path: str) -> str:
    escaped = path.replace("'", "'\\''")
    return f"'{escaped}'"


def _write_json(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
