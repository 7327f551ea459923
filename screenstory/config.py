from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "SCREEN_STORY_"

logger = logging.getLogger(__name__)

DEFAULT_BLUR_RULES = {
    "Bank of America": "top-bar",
    "Chase": "top-bar",
    "1Password": "window",
    "LastPass": "window",
    "Bitwarden": "window",
}


class SegmentationSettings(BaseModel):
    time_gap_threshold_seconds: float = 300.0
    app_switch_weight: float = 0.5
    min_cluster_frames: int = 3
    max_samples: int = 5


class GroupingSettings(BaseModel):
    # Query-result display clustering; tuned independently of segmentation.
    gap_threshold_seconds: float = 600.0
    min_results: int = 3


class SelectionSettings(BaseModel):
    mode: str = "hero"
    hero_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    super_hero_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    custom_threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class PacingSettings(BaseModel):
    min_duration: float = 1.0
    max_duration: float = 3.0

    @model_validator(mode="after")
    def _check_bounds(self) -> "PacingSettings":
        if self.min_duration <= 0:
            raise ValueError("pacing.min_duration must be positive.")
        if self.max_duration < self.min_duration:
            raise ValueError("pacing.max_duration must be >= pacing.min_duration.")
        return self


class CroppingSettings(BaseModel):
    enabled: bool = True
    padding: int = 20
    min_window_size: int = 100
    max_workers: int = 4


class OverlaySettings(BaseModel):
    captions: bool = True
    timestamps: bool = True
    success_indicators: bool = True
    progress_bar: bool = True
    success_relevance_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    timestamp_format: str = "%H:%M:%S"
    privacy_blur: bool = True
    blur_method: Literal["block", "blur"] = "block"
    blur_top_bar_height: int = Field(default=100, gt=0)
    # App name -> "top-bar" (account header) or "window" (whole app).
    blur_rules: dict[str, Literal["top-bar", "window"]] = Field(default_factory=lambda: dict(DEFAULT_BLUR_RULES))


class LLMSettings(BaseModel):
    provider: str = "ollama"
    model: str = "qwen2.5:7b-instruct-q4_K_M"
    endpoint: str = "http://localhost:11434"
    timeout_seconds: int = 30
    max_retries: int = 2
    backoff_seconds: float = 1.0


class PipelineSettings(BaseModel):
    output_dir: Path = Path("data/outputs")
    cache_dir: Path = Path("data/cache")


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Path | None = None


class Settings(BaseModel):
    segmentation: SegmentationSettings = Field(default_factory=SegmentationSettings)
    grouping: GroupingSettings = Field(default_factory=GroupingSettings)
    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    pacing: PacingSettings = Field(default_factory=PacingSettings)
    cropping: CroppingSettings = Field(default_factory=CroppingSettings)
    overlays: OverlaySettings = Field(default_factory=OverlaySettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML, then apply ``SCREEN_STORY_<SECTION>__<KEY>`` overrides.

    Override values are coerced to the type of the value they replace; lists
    and dicts (such as ``overlays.blur_rules``) are given as JSON.
    """

    resolved_path = Path(config_path or os.getenv(f"{ENV_PREFIX}CONFIG") or DEFAULT_CONFIG_PATH)
    raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for path, raw_value in _env_overrides():
        if not _apply_override(data, path, raw_value):
            logger.warning("Ignoring %s%s: no such setting.", ENV_PREFIX, "__".join(path).upper())

    return Settings.model_validate(data)


def _env_overrides() -> list[tuple[list[str], str]]:
    overrides: list[tuple[list[str], str]] = []
    for key, raw_value in sorted(os.environ.items()):
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG":
            continue
        overrides.append(([part.lower() for part in key[len(ENV_PREFIX) :].split("__")], raw_value))
    return overrides


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> bool:
    parent: Any = data
    for segment in path[:-1]:
        parent = parent.get(segment) if isinstance(parent, dict) else None

    if not isinstance(parent, dict) or path[-1] not in parent:
        return False

    parent[path[-1]] = _coerce_value(raw_value, parent[path[-1]])
    return True


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    lowered = raw_value.strip().lower()
    if isinstance(existing_value, bool):
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"Expected a boolean override, got {raw_value!r}.")
    if existing_value is None:
        return None if lowered in {"", "none", "null"} else raw_value
    if isinstance(existing_value, int | float):
        return type(existing_value)(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
