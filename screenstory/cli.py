from __future__ import annotations

import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Callable, TypeVar

import typer

from screenstory.config import Settings, load_settings
from screenstory.errors import DataError, EmptySelection, ScreenStoryError
from screenstory.export.exporter import export_composition, tasks_to_payload
from screenstory.logging_config import configure_logging
from screenstory.pipeline import assemble_from_settings
from screenstory.segmentation.cluster_judge import OllamaClusterJudge
from screenstory.segmentation.grouping import cluster_by_time, describe_clusters, summarize_results
from screenstory.segmentation.temporal import detect_tasks
from screenstory.store import FrameSnapshot, JsonFrameStore

app = typer.Typer(help="Screen Story: task segmentation and demo-video composition plans.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXIT_FAILURE = 1
EXIT_EMPTY_SELECTION = 2


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    prefix = f"[{step_index}/{total_steps}] {label}"
    typer.echo(f"{prefix}...", err=True)
    started_at = perf_counter()
    outcome = "failed after"
    try:
        result = work()
        outcome = "done in"
        return result
    finally:
        typer.echo(f"{prefix} {outcome} {perf_counter() - started_at:.1f}s", err=True)


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug(
        "Settings from %s: selection=%s, judge=%s@%s",
        config_path,
        settings.selection.mode,
        settings.llm.model,
        settings.llm.endpoint,
    )
    return settings


def _load_snapshot(frames_path: Path, session_id: int | None) -> FrameSnapshot:
    store = JsonFrameStore(frames_path)
    if session_id is None:
        session_ids = store.session_ids()
        if len(session_ids) != 1:
            raise DataError(f"Export holds sessions {session_ids}; pass --session-id to pick one.")
        session_id = session_ids[0]

    frames = store.get_frames_for_session(session_id)
    if not frames:
        raise DataError(f"No frames found for session {session_id}.")
    return frames


def _fail(exc: Exception, code: int = EXIT_FAILURE) -> typer.Exit:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=code)


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SCREEN_STORY_CONFIG",
        help="Path to YAML configuration file.",
    )
) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command("segment")
def segment(
    frames_path: Path = typer.Argument(..., help="JSON export of the session's screenshot rows."),
    session_id: int | None = typer.Option(None, "--session-id", "-s", help="Session to read; required when the export holds several."),
    output_path: Path | None = typer.Option(None, "--output", "-o", help="Optional path for the task report JSON."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SCREEN_STORY_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Detect coherent tasks in a session using gap/app-switch clustering and AI judgment."""

    settings = _bootstrap(config_path)
    seg = settings.segmentation

    try:
        frames = _load_snapshot(frames_path, session_id)
        analyzed = tuple(frame for frame in frames if frame.analyzed)
        if not analyzed:
            raise DataError("No analyzed frames found. Run frame analysis first.")

        judge = OllamaClusterJudge.from_settings(settings.llm)
        report = _run_with_progress(
            1,
            1,
            "Detect tasks",
            lambda: detect_tasks(
                analyzed,
                judge,
                time_gap_threshold_seconds=seg.time_gap_threshold_seconds,
                app_switch_weight=seg.app_switch_weight,
                min_cluster_frames=seg.min_cluster_frames,
                max_samples=seg.max_samples,
            ),
        )
    except (ScreenStoryError, RuntimeError, ValueError, OSError) as exc:
        raise _fail(exc) from exc

    payload = tasks_to_payload(report)
    if output_path is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@app.command("group")
def group(
    frames_path: Path = typer.Argument(..., help="JSON array of frames, e.g. search results."),
    gap_threshold: float | None = typer.Option(None, help="Max seconds between frames in one group (default from config)."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SCREEN_STORY_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Group query results by time proximity and print result statistics."""

    settings = _bootstrap(config_path)
    threshold = gap_threshold if gap_threshold is not None else settings.grouping.gap_threshold_seconds

    try:
        store = JsonFrameStore(frames_path)
        frames = [frame for session in store.session_ids() for frame in store.get_frames_for_session(session)]
    except (ScreenStoryError, ValueError, OSError) as exc:
        raise _fail(exc) from exc

    if len(frames) < settings.grouping.min_results:
        typer.echo(
            f"Too few frames (< {settings.grouping.min_results}). Try a broader search query.",
            err=True,
        )

    clusters = cluster_by_time(frames, gap_threshold_seconds=threshold)
    typer.echo(
        json.dumps(
            {
                "gap_threshold_seconds": threshold,
                "stats": summarize_results(frames),
                "clusters": describe_clusters(clusters),
            },
            indent=2,
            ensure_ascii=False,
        )
    )


@app.command("compose")
def compose(
    frames_path: Path = typer.Argument(..., help="JSON export of the session's screenshot rows."),
    session_id: int | None = typer.Option(None, "--session-id", "-s", help="Session to read; required when the export holds several."),
    mode: str | None = typer.Option(None, help="Selection mode: all, hero, super-hero, custom."),
    threshold: float | None = typer.Option(None, help="Relevance threshold for custom mode."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for plan/overlay outputs."),
    basename: str | None = typer.Option(None, help="Base filename for exported artifacts. Defaults to session-<id>."),
    crop: bool = typer.Option(True, help="Crop windowed frames to their window bounds."),
    captions: bool = typer.Option(True, help="Emit AI-summary caption overlays."),
    timestamps: bool = typer.Option(True, help="Emit timestamp overlays."),
    success_indicators: bool = typer.Option(True, help="Emit success overlays for hero success frames."),
    progress_bar: bool = typer.Option(True, help="Emit a composition-wide progress bar overlay."),
    privacy_blur: bool = typer.Option(True, help="Emit blur regions for apps listed in overlays.blur_rules."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="SCREEN_STORY_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Build a paced, cropped, overlay-annotated composition plan for the renderer."""

    settings = _bootstrap(config_path)
    overlays = settings.overlays
    settings.overlays = overlays.model_copy(
        update={
            "captions": overlays.captions and captions,
            "timestamps": overlays.timestamps and timestamps,
            "success_indicators": overlays.success_indicators and success_indicators,
            "progress_bar": overlays.progress_bar and progress_bar,
            "privacy_blur": overlays.privacy_blur and privacy_blur,
        }
    )
    settings.cropping = settings.cropping.model_copy(update={"enabled": settings.cropping.enabled and crop})

    total_steps = 3
    resolved_output_dir = Path(output_dir or settings.pipeline.output_dir)

    try:
        frames = _run_with_progress(1, total_steps, "Load frames", lambda: _load_snapshot(frames_path, session_id))
        resolved_basename = basename or f"session-{frames[0].session_id}"
        crop_dir = Path(settings.pipeline.cache_dir) / "crops" / resolved_basename

        result = _run_with_progress(
            2,
            total_steps,
            "Assemble composition",
            lambda: assemble_from_settings(
                frames,
                settings,
                mode=mode,
                custom_threshold=threshold,
                crop_dir=crop_dir,
            ),
        )
        exported = _run_with_progress(
            3,
            total_steps,
            "Export outputs",
            lambda: export_composition(result, resolved_output_dir, basename=resolved_basename),
        )
    except EmptySelection as exc:
        raise _fail(exc, code=EXIT_EMPTY_SELECTION) from exc
    except (ScreenStoryError, RuntimeError, ValueError, OSError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "stats": result.stats,
                "outputs": {key: str(path) for key, path in exported.items()},
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
