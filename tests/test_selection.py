from __future__ import annotations

import pytest

from screenstory.assembly.selector import normalize_mode, resolve_threshold, select_frames


def test_hero_mode_keeps_frames_at_or_above_threshold(make_frame) -> None:
    frames = [
        make_frame(1, offset=0, relevance=0.5),
        make_frame(2, offset=10, relevance=0.72),
        make_frame(3, offset=20, relevance=0.95),
        make_frame(4, offset=30, relevance=0.3),
    ]

    selected = select_frames(frames, "hero")

    assert [frame.id for frame in selected] == [2, 3]


def test_threshold_is_inclusive(make_frame) -> None:
    frames = [make_frame(1, relevance=0.7), make_frame(2, offset=1, relevance=0.8)]

    assert [frame.id for frame in select_frames(frames, "hero")] == [1, 2]
    assert [frame.id for frame in select_frames(frames, "super-hero")] == [2]


def test_all_mode_keeps_zero_relevance_but_drops_unanalyzed(make_frame) -> None:
    frames = [
        make_frame(1, offset=0, relevance=0.0),
        make_frame(2, offset=10, relevance=0.9, analyzed=False),
        make_frame(3, offset=20, relevance=None),
    ]

    selected = select_frames(frames, "all")

    assert [frame.id for frame in selected] == [1, 3]


def test_missing_score_counts_as_half(make_frame) -> None:
    frames = [make_frame(1, relevance=None)]

    assert select_frames(frames, "custom", 0.5) == frames
    assert select_frames(frames, "custom", 0.51) == []


def test_selection_is_subset_in_timestamp_order(make_frame) -> None:
    frames = [
        make_frame(3, offset=300, relevance=0.9),
        make_frame(1, offset=100, relevance=0.8),
        make_frame(2, offset=200, relevance=0.1),
    ]

    selected = select_frames(frames, "hero")

    assert [frame.id for frame in selected] == [1, 3]
    assert all(frame in frames for frame in selected)


def test_thresholds_are_configurable(make_frame) -> None:
    frames = [make_frame(1, relevance=0.65)]

    assert select_frames(frames, "hero", hero_threshold=0.6) == frames
    assert select_frames(frames, "super-hero", super_hero_threshold=0.9) == []


@pytest.mark.parametrize(
    ("mode", "expected"),
    [("all", 0.0), ("hero", 0.7), ("super-hero", 0.8), ("superhero", 0.8), ("SUPER_HERO", 0.8)],
)
def test_resolve_threshold(mode: str, expected: float) -> None:
    assert resolve_threshold(mode) == pytest.approx(expected)


def test_custom_mode_requires_threshold_in_range() -> None:
    assert resolve_threshold("custom", 0.42) == pytest.approx(0.42)
    with pytest.raises(ValueError, match="requires a custom threshold"):
        resolve_threshold("custom")
    with pytest.raises(ValueError, match="must be in"):
        resolve_threshold("custom", 1.5)


def test_unknown_mode_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported selection mode"):
        normalize_mode("best")
