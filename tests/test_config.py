from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from screenstory.config import load_settings


def _write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_settings_reads_yaml_and_keeps_defaults(tmp_path: Path) -> None:
    path = _write_config(tmp_path, "selection:\n  mode: super-hero\npacing:\n  max_duration: 4.5\n")

    settings = load_settings(path)

    assert settings.selection.mode == "super-hero"
    assert settings.pacing.max_duration == 4.5
    assert settings.segmentation.time_gap_threshold_seconds == 300.0
    assert settings.grouping.gap_threshold_seconds == 600.0
    assert settings.llm.timeout_seconds == 30


def test_environment_overrides_nested_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write_config(tmp_path, "{}\n")
    monkeypatch.setenv("SCREEN_STORY_SELECTION__HERO_THRESHOLD", "0.65")
    monkeypatch.setenv("SCREEN_STORY_CROPPING__ENABLED", "false")
    monkeypatch.setenv("SCREEN_STORY_SELECTION__CUSTOM_THRESHOLD", "0.4")
    monkeypatch.setenv("SCREEN_STORY_UNKNOWN__KEY", "ignored")

    settings = load_settings(path)

    assert settings.selection.hero_threshold == pytest.approx(0.65)
    assert settings.selection.custom_threshold == pytest.approx(0.4)
    assert settings.cropping.enabled is False


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write_config(tmp_path, "overlays:\n  progress_bar: false\n")
    monkeypatch.setenv("SCREEN_STORY_CONFIG", str(path))

    assert load_settings().overlays.progress_bar is False


@pytest.mark.parametrize(
    "text",
    [
        "pacing:\n  min_duration: 3.0\n  max_duration: 1.0\n",
        "pacing:\n  min_duration: 0\n",
        "selection:\n  hero_threshold: 1.5\n",
    ],
)
def test_invalid_settings_are_rejected(tmp_path: Path, text: str) -> None:
    with pytest.raises(ValidationError):
        load_settings(_write_config(tmp_path, text))


def test_shipped_default_config_loads() -> None:
    default_path = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"

    settings = load_settings(default_path)

    assert settings.selection.hero_threshold == pytest.approx(0.7)
    assert settings.overlays.success_relevance_threshold == pytest.approx(0.8)


def test_blur_rules_override_from_json(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCREEN_STORY_OVERLAYS__BLUR_RULES", '{"KeePassXC": "window"}')

    settings = load_settings(_write_config(tmp_path, "{}\n"))

    assert settings.overlays.blur_rules == {"KeePassXC": "window"}


def test_default_blur_rules_cover_password_managers(tmp_path: Path) -> None:
    rules = load_settings(_write_config(tmp_path, "{}\n")).overlays.blur_rules

    assert rules["1Password"] == "window"
    assert rules["Chase"] == "top-bar"


def test_unreadable_boolean_override_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCREEN_STORY_CROPPING__ENABLED", "sometimes")

    with pytest.raises(ValueError, match="Expected a boolean"):
        load_settings(_write_config(tmp_path, "{}\n"))


def test_unknown_blur_rule_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        load_settings(_write_config(tmp_path, "overlays:\n  blur_rules:\n    Chase: pixelate\n"))


def test_unknown_override_is_logged_and_ignored(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("SCREEN_STORY_PACING__MAX_DURATON", "9")

    with caplog.at_level("WARNING", logger="screenstory.config"):
        settings = load_settings(_write_config(tmp_path, "{}\n"))

    assert "SCREEN_STORY_PACING__MAX_DURATON" in caplog.text
    assert settings.pacing.max_duration != 9
