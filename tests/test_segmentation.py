from __future__ import annotations

import threading

import pytest

from screenstory.errors import DataError, PipelineCancelled
from screenstory.segmentation import cluster_judge
from screenstory.segmentation.cluster_judge import ClusterJudgment, OllamaClusterJudge, Parsed, ParseError
from screenstory.segmentation.temporal import (
    detect_tasks,
    generate_task_name,
    sample_frames,
    segment_frames,
)


def _coherent(name: str = "debugging-build", relevance: float = 0.9) -> Parsed:
    return Parsed(
        judgment=ClusterJudgment(
            is_coherent_task=True,
            task_name=name,
            description="Fixing a failing build",
            success=True,
            relevance=relevance,
        )
    )


def test_app_switch_with_long_gap_splits_after_third_frame(make_frame) -> None:
    frames = [
        make_frame(1, offset=0, app="Terminal", relevance=0.1),
        make_frame(2, offset=30, app="Terminal", relevance=0.9),
        make_frame(3, offset=60, app="Terminal", relevance=0.9),
        make_frame(4, offset=460, app="Chrome", relevance=0.1),
        make_frame(5, offset=490, app="Chrome", relevance=0.2),
    ]

    clusters = segment_frames(frames, time_gap_threshold_seconds=300)

    assert len(clusters) == 2
    assert [frame.id for frame in clusters[0].frames] == [1, 2, 3]
    assert [frame.id for frame in clusters[1].frames] == [4, 5]


def test_app_switch_only_splits_above_weighted_gap(make_frame) -> None:
    frames = [
        make_frame(1, offset=0, app="Terminal"),
        make_frame(2, offset=140, app="Chrome"),
        make_frame(3, offset=300, app="Slack"),
    ]

    clusters = segment_frames(frames, time_gap_threshold_seconds=300, app_switch_weight=0.5)

    assert [[frame.id for frame in cluster.frames] for cluster in clusters] == [[1, 2], [3]]


def test_same_app_splits_only_on_full_threshold(make_frame) -> None:
    frames = [
        make_frame(1, offset=0),
        make_frame(2, offset=299),
        make_frame(3, offset=600),
    ]

    clusters = segment_frames(frames, time_gap_threshold_seconds=300)

    assert [cluster.frame_count for cluster in clusters] == [2, 1]


def test_cluster_boundaries_satisfy_split_rule(make_frame) -> None:
    apps = ["Terminal", "Terminal", "Chrome", "Chrome", "Slack", "Terminal", "Terminal"]
    offsets = [0, 100, 260, 700, 720, 900, 1300]
    frames = [make_frame(idx, offset=offset, app=app) for idx, (offset, app) in enumerate(zip(offsets, apps), start=1)]
    threshold, weight = 300.0, 0.5

    clusters = segment_frames(frames, time_gap_threshold_seconds=threshold, app_switch_weight=weight)

    flattened = [frame for cluster in clusters for frame in cluster.frames]
    assert flattened == frames
    for cluster in clusters:
        stamps = [frame.timestamp for frame in cluster.frames]
        assert stamps == sorted(stamps)
    for prev_cluster, cluster in zip(clusters, clusters[1:]):
        prev, first = prev_cluster.frames[-1], cluster.frames[0]
        gap = (first.timestamp - prev.timestamp).total_seconds()
        assert gap > threshold or (prev.app_name != first.app_name and gap > threshold * weight)


def test_segment_frames_rejects_unsorted_input(make_frame) -> None:
    frames = [make_frame(1, offset=100), make_frame(2, offset=50)]

    with pytest.raises(DataError, match="sorted by timestamp"):
        segment_frames(frames)


def test_segment_frames_empty_input_returns_no_clusters() -> None:
    assert segment_frames([]) == []


def test_raw_cluster_metadata(make_frame) -> None:
    frames = [
        make_frame(1, offset=0, app="Terminal", relevance=0.2, summary="running pytest suite"),
        make_frame(2, offset=10, app="Editor", relevance=None, summary="editing pytest fixtures"),
        make_frame(3, offset=20, app="Terminal", relevance=0.8),
    ]

    (cluster,) = segment_frames(frames)

    assert cluster.apps_used == ["Terminal", "Editor"]
    assert cluster.relevance == pytest.approx((0.2 + 0.5 + 0.8) / 3)
    assert cluster.duration_seconds == pytest.approx(20.0)
    assert cluster.is_coherent is False
    assert cluster.name.startswith("task-pytest")


@pytest.mark.parametrize(("count", "expected"), [(3, [0, 1, 2]), (5, [0, 1, 2, 3, 4]), (12, [0, 2, 4, 6, 8])])
def test_sample_frames_even_spacing(make_frame, count: int, expected: list[int]) -> None:
    frames = [make_frame(idx, offset=idx) for idx in range(count)]

    sampled = sample_frames(frames, max_samples=5)

    assert [frame.id for frame in sampled] == expected


def test_generate_task_name_prefers_frequent_keywords(make_frame) -> None:
    frames = [
        make_frame(1, tags=frozenset({"calendar"}), summary="booking coffee chat"),
        make_frame(2, tags=frozenset({"calendar"}), summary="coffee invite sent"),
    ]

    assert generate_task_name(frames) == "task-calendar-coffee-booking"


def test_generate_task_name_without_keywords(make_frame) -> None:
    assert generate_task_name([make_frame(1, summary="a an it")]) == "task-unknown"


def test_detect_tasks_keeps_only_coherent_clusters_and_counts_drops(make_frame) -> None:
    frames = [
        # cluster 0: coherent
        make_frame(1, offset=0),
        make_frame(2, offset=10),
        make_frame(3, offset=20),
        # cluster 1: too small
        make_frame(4, offset=1000),
        # cluster 2: judged incoherent
        make_frame(5, offset=2000),
        make_frame(6, offset=2010),
        make_frame(7, offset=2020),
        # cluster 3: judge failure
        make_frame(8, offset=3000),
        make_frame(9, offset=3010),
        make_frame(10, offset=3020),
    ]
    judged: list[list[int]] = []

    def fake_judge(samples):
        ids = [frame.id for frame in samples]
        judged.append(ids)
        if ids[0] == 1:
            return _coherent()
        if ids[0] == 5:
            return Parsed(judgment=ClusterJudgment(False, "browsing", "Random browsing", None, 0.2))
        return ParseError(reason="timeout")

    report = detect_tasks(frames, fake_judge)

    assert judged == [[1, 2, 3], [5, 6, 7], [8, 9, 10]]
    assert report.raw_cluster_count == 4
    assert [task.name for task in report.tasks] == ["debugging-build"]
    task = report.tasks[0]
    assert task.is_coherent is True
    assert task.success_state is True
    assert task.relevance == pytest.approx(0.9)
    assert [frame.id for frame in task.frames] == [1, 2, 3]
    assert report.dropped_too_small == 1
    assert report.dropped_incoherent == 1
    assert report.dropped_ai_failure == 1
    assert report.dropped_total == 3
    assert [item.reason for item in report.ambiguities] == ["too-small", "incoherent", "ai-failure"]


def test_detect_tasks_samples_large_clusters(make_frame) -> None:
    frames = [make_frame(idx, offset=idx * 5) for idx in range(20)]
    seen: list[int] = []

    def fake_judge(samples):
        seen.append(len(samples))
        return _coherent()

    report = detect_tasks(frames, fake_judge, max_samples=5)

    assert seen == [5]
    assert report.tasks[0].frame_count == 20


def test_detect_tasks_honours_cancellation(make_frame) -> None:
    frames = [make_frame(idx, offset=idx) for idx in range(1, 4)]
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(PipelineCancelled):
        detect_tasks(frames, lambda samples: _coherent(), cancel_event=cancel)


def test_non_object_ollama_reply_drops_cluster_without_aborting(make_frame, monkeypatch: pytest.MonkeyPatch) -> None:
    class _ListBody:
        def read(self) -> bytes:
            return b"[]"

        def __enter__(self):
            return self

        def __exit__(self, *exc_info) -> None:
            return None

    monkeypatch.setattr(cluster_judge.request, "urlopen", lambda *_args, **_kwargs: _ListBody())
    frames = [make_frame(idx, offset=idx * 10) for idx in range(1, 4)]

    report = detect_tasks(frames, OllamaClusterJudge(max_retries=0))

    assert report.tasks == []
    assert report.dropped_ai_failure == 1
    assert report.ambiguities[0].reason == "ai-failure"


def test_judge_that_raises_counts_as_ai_failure(make_frame) -> None:
    frames = [make_frame(idx, offset=idx * 10) for idx in range(1, 4)]
    frames += [make_frame(idx, offset=5000 + idx * 10) for idx in range(4, 7)]
    calls: list[int] = []

    def flaky_judge(samples):
        calls.append(samples[0].id)
        if samples[0].id == 1:
            raise RuntimeError("judge crashed")
        return _coherent()

    report = detect_tasks(frames, flaky_judge)

    assert calls == [1, 4]
    assert report.dropped_ai_failure == 1
    assert "RuntimeError: judge crashed" in report.ambiguities[0].detail
    assert [task.frames[0].id for task in report.tasks] == [4]


def test_cancellation_raised_inside_judge_propagates(make_frame) -> None:
    frames = [make_frame(idx, offset=idx) for idx in range(1, 4)]

    def cancelling_judge(samples):
        raise PipelineCancelled("stop")

    with pytest.raises(PipelineCancelled):
        detect_tasks(frames, cancelling_judge)
