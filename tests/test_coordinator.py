"""环节五：批量转换协调器的状态机、计数与完成检测。"""

from __future__ import annotations

import json
import os
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from pathlib import Path

import pytest
from PIL import Image

from heif_converter.core.config import ConverterConfig
from heif_converter.core.exceptions import InvalidConfigurationError
from heif_converter.core.models import BatchResult
from heif_converter.core.progress import ConverterState, ProgressUpdate
from heif_converter.processing.coordinator import ConversionCoordinator
from heif_converter.processing.dispatch import QueueDispatcher


class ManualExecutor(Executor):
    """收集提交的任务，由测试决定执行顺序。"""

    def __init__(self) -> None:
        self.jobs: list = []

    def submit(self, fn, /, *args, **kwargs):  # type: ignore[override]
        self.jobs.append((fn, args, kwargs))
        return Future()

    def run_all(self, reverse: bool = False) -> None:
        jobs = list(reversed(self.jobs)) if reverse else list(self.jobs)
        self.jobs.clear()
        for fn, args, kwargs in jobs:
            fn(*args, **kwargs)


class CountingExecutor(ThreadPoolExecutor):
    def __init__(self) -> None:
        super().__init__(max_workers=4)
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):  # type: ignore[override]
        self.submitted += 1
        return super().submit(fn, *args, **kwargs)


def _make_sample_tree(root: Path) -> dict[str, Path]:
    root.mkdir(parents=True, exist_ok=True)
    image = root / "icon.png"
    Image.new("RGB", (16, 16), "green").save(image)
    manifest = root / "Contents.json"
    manifest.write_text(json.dumps({"images": [{"filename": "icon.png"}]}), encoding="utf-8")
    invalid = root / "readme.txt"
    invalid.write_text("hello")
    return {"image": image, "manifest": manifest, "invalid": invalid}


def test_empty_batch_is_noop(tmp_path: Path) -> None:
    files = _make_sample_tree(tmp_path)

    with ConversionCoordinator(ConverterConfig(max_workers=2)) as coordinator:
        assert coordinator.start_batch([]) is False
        assert coordinator.state is ConverterState.LAUNCHED

        assert coordinator.start_batch([files["image"]]) is True
        assert coordinator.wait(timeout=30)
        before = coordinator.counters

        assert coordinator.start_batch([]) is False
        assert coordinator.state is ConverterState.COMPLETE
        assert coordinator.counters == before


def test_image_manifest_and_invalid_schedule_two_jobs(tmp_path: Path) -> None:
    files = _make_sample_tree(tmp_path)
    executor = CountingExecutor()
    completions: list[BatchResult] = []

    with ConversionCoordinator(executor=executor) as coordinator:
        coordinator.subscribe_completion(completions.append)
        assert coordinator.start_batch([files["image"], files["manifest"], files["invalid"]])
        assert coordinator.wait(timeout=30)

        assert executor.submitted == 2
        assert coordinator.state is ConverterState.COMPLETE
        assert coordinator.counters.total_images == 1
        assert coordinator.counters.processed_images == 1
    executor.shutdown()

    assert len(completions) == 1
    result = completions[0]
    assert result.images_converted == 1
    assert result.manifests_rewritten == 1
    assert result.failed == []
    assert (tmp_path / "icon.heic").exists()
    assert json.loads(files["manifest"].read_text(encoding="utf-8")) == {"images": [{"filename": "icon.heic"}]}


@pytest.mark.parametrize("reverse", [False, True])
def test_completion_independent_of_job_order(tmp_path: Path, reverse: bool) -> None:
    files = _make_sample_tree(tmp_path)
    executor = ManualExecutor()
    dispatcher = QueueDispatcher()
    coordinator = ConversionCoordinator(dispatcher=dispatcher, executor=executor)

    assert coordinator.start_batch([files["manifest"], files["image"]])
    dispatcher.drain()
    assert coordinator.state is ConverterState.CONVERTING
    assert coordinator.counters.total_images == 1
    assert coordinator.counters.processed_images == 0
    assert len(executor.jobs) == 2

    executor.run_all(reverse=reverse)
    # 完成状态只会在派发线程上切换
    assert coordinator.state is ConverterState.CONVERTING

    dispatcher.drain()
    assert coordinator.state is ConverterState.COMPLETE
    assert coordinator.counters.processed_images == coordinator.counters.total_images == 1
    assert coordinator.wait(timeout=0)


def test_progress_never_exceeds_total(tmp_path: Path) -> None:
    for idx in range(12):
        sub = tmp_path / f"set{idx % 3}"
        sub.mkdir(exist_ok=True)
        Image.new("RGB", (8 + idx, 8), "red").save(sub / f"img{idx}.jpg")
    (tmp_path / "set0" / "broken.jpg").write_text("nope")

    updates: list[ProgressUpdate] = []
    seen_at_completion: list[tuple[int, int]] = []

    with ConversionCoordinator(ConverterConfig(max_workers=4)) as coordinator:
        coordinator.subscribe(updates.append)
        coordinator.subscribe_completion(
            lambda _: seen_at_completion.append(
                (coordinator.counters.processed_images, coordinator.counters.total_images)
            )
        )
        coordinator.start_batch([tmp_path])
        assert coordinator.wait(timeout=60)
        result = coordinator.result

    assert all(update.processed <= update.total for update in updates)
    assert updates[-1].state is ConverterState.COMPLETE
    assert updates[-1].label == "转换完成"
    assert seen_at_completion == [(13, 13)]
    assert result is not None
    assert result.images_converted == 12
    assert len(result.failed) == 1


def test_failures_do_not_abort_batch(tmp_path: Path) -> None:
    Image.new("RGB", (10, 10), "white").save(tmp_path / "good.jpg")
    (tmp_path / "bad.png").write_text("not a png")
    (tmp_path / "Contents.json").write_text("{broken", encoding="utf-8")

    with ConversionCoordinator() as coordinator:
        coordinator.start_batch([tmp_path])
        assert coordinator.wait(timeout=30)
        result = coordinator.result

    assert result is not None
    assert result.images_converted == 1
    assert len(result.failed) == 2
    summary = result.failure_summary()
    assert any("bad.png" in line for line in summary)
    assert any("Contents.json" in line for line in summary)


def test_all_invalid_paths_still_complete(tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("x")

    with ConversionCoordinator() as coordinator:
        assert coordinator.start_batch([tmp_path / "notes.txt", tmp_path / "missing.jpg"])
        assert coordinator.wait(timeout=10)
        assert coordinator.state is ConverterState.COMPLETE
        assert coordinator.counters.total_images == 0
        assert coordinator.result is not None
        assert coordinator.result.all_outcomes() == []


def test_start_while_converting_is_rejected(tmp_path: Path) -> None:
    files = _make_sample_tree(tmp_path)
    executor = ManualExecutor()
    dispatcher = QueueDispatcher()
    coordinator = ConversionCoordinator(dispatcher=dispatcher, executor=executor)

    assert coordinator.start_batch([files["image"]])
    assert coordinator.start_batch([files["manifest"]]) is False
    assert len(executor.jobs) == 1

    executor.run_all()
    dispatcher.drain()
    assert coordinator.state is ConverterState.COMPLETE
    assert coordinator.start_batch([files["manifest"]]) is True


def test_listener_errors_do_not_block_completion(tmp_path: Path) -> None:
    files = _make_sample_tree(tmp_path)
    called = threading.Event()

    def bad_listener(update: ProgressUpdate) -> None:
        raise RuntimeError("ui exploded")

    with ConversionCoordinator() as coordinator:
        coordinator.subscribe(bad_listener)
        coordinator.subscribe_completion(lambda _: called.set())
        coordinator.start_batch([files["image"]])
        assert coordinator.wait(timeout=30)

    assert called.is_set()


def test_unsubscribe_stops_updates(tmp_path: Path) -> None:
    files = _make_sample_tree(tmp_path)
    updates: list[ProgressUpdate] = []

    with ConversionCoordinator() as coordinator:
        unsubscribe = coordinator.subscribe(updates.append)
        unsubscribe()
        coordinator.start_batch([files["image"]])
        assert coordinator.wait(timeout=30)

    assert updates == []


def test_invalid_config_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        ConversionCoordinator(ConverterConfig(target_extension="webp"))
    with pytest.raises(InvalidConfigurationError):
        ConversionCoordinator(ConverterConfig(max_workers=0))


class FailingExecutor(ManualExecutor):
    """第 ``fail_on`` 次提交时抛出异常，模拟线程池已关闭。"""

    def __init__(self, fail_on: int) -> None:
        super().__init__()
        self.fail_on = fail_on
        self.calls = 0

    def submit(self, fn, /, *args, **kwargs):  # type: ignore[override]
        self.calls += 1
        if self.calls == self.fail_on:
            raise RuntimeError("cannot schedule new futures after shutdown")
        return super().submit(fn, *args, **kwargs)


def test_completion_listener_can_chain_next_batch(tmp_path: Path) -> None:
    first = tmp_path / "first"
    first.mkdir()
    Image.new("RGB", (8, 8), "blue").save(first / "seed.jpg")
    second = tmp_path / "second"
    second.mkdir()
    for idx in range(20):
        Image.new("RGB", (8 + idx, 8), "red").save(second / f"img{idx}.jpg")

    chained = threading.Event()

    with ConversionCoordinator(ConverterConfig(max_workers=2)) as coordinator:

        def start_next(_: BatchResult) -> None:
            if chained.is_set():
                return
            coordinator.start_batch([second])
            chained.set()

        coordinator.subscribe_completion(start_next)
        coordinator.start_batch([first])
        assert chained.wait(timeout=30)
        assert coordinator.wait(timeout=60)

        assert coordinator.state is ConverterState.COMPLETE
        assert coordinator.counters.processed_images == coordinator.counters.total_images == 20
        assert coordinator.result is not None
        assert coordinator.result.images_converted == 20


def test_sources_sharing_destination_convert_once(tmp_path: Path) -> None:
    Image.new("RGB", (8, 8), "red").save(tmp_path / "a.jpg")
    Image.new("RGB", (8, 8), "blue").save(tmp_path / "a.png")

    with ConversionCoordinator() as coordinator:
        assert coordinator.start_batch([tmp_path])
        assert coordinator.wait(timeout=30)
        counters = coordinator.counters
        result = coordinator.result

    assert counters.total_images == counters.processed_images == 2
    assert result is not None
    assert result.images_converted == 1
    assert result.failed == []
    assert len(result.skipped) == 1
    assert "冲突" in (result.skipped[0].message or "")
    assert (tmp_path / "a.heic").exists()


def test_scheduling_error_still_completes_batch(tmp_path: Path) -> None:
    Image.new("RGB", (8, 8), "red").save(tmp_path / "one.jpg")
    Image.new("RGB", (8, 8), "red").save(tmp_path / "two.jpg")
    executor = FailingExecutor(fail_on=2)
    dispatcher = QueueDispatcher()
    coordinator = ConversionCoordinator(dispatcher=dispatcher, executor=executor)

    with pytest.raises(RuntimeError):
        coordinator.start_batch([tmp_path])

    # 只有成功提交的任务计入总数
    assert coordinator.counters.total_images == 1
    assert len(executor.jobs) == 1

    executor.run_all()
    dispatcher.drain()
    assert coordinator.state is ConverterState.COMPLETE
    assert coordinator.wait(timeout=0)
    assert coordinator.counters.processed_images == coordinator.counters.total_images == 1

    assert coordinator.start_batch([tmp_path / "one.jpg"]) is True


def test_start_after_close_raises(tmp_path: Path) -> None:
    files = _make_sample_tree(tmp_path)
    coordinator = ConversionCoordinator()
    coordinator.close()

    with pytest.raises(RuntimeError):
        coordinator.start_batch([files["image"]])
    assert coordinator.state is ConverterState.LAUNCHED


def test_unreadable_subtree_does_not_stop_batch(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    Image.new("RGB", (8, 8), "red").save(tmp_path / "visible.jpg")
    locked = tmp_path / "locked"
    locked.mkdir()
    Image.new("RGB", (8, 8), "red").save(locked / "hidden.jpg")
    real_scandir = os.scandir

    def guarded_scandir(path: object = ".") -> object:
        if Path(os.fspath(path)) == locked:
            raise PermissionError(13, "Permission denied", os.fspath(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", guarded_scandir)

    with ConversionCoordinator() as coordinator:
        assert coordinator.start_batch([tmp_path])
        assert coordinator.wait(timeout=30)
        result = coordinator.result

    assert result is not None
    assert result.images_converted == 1
    assert (tmp_path / "visible.heic").exists()
    assert not (locked / "hidden.heic").exists()


def test_manifest_write_failure_is_recorded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manifest = tmp_path / "Contents.json"
    original = json.dumps({"images": [{"filename": "icon.png"}]})
    manifest.write_text(original, encoding="utf-8")

    def broken_replace(src: str, dst: str) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)

    with ConversionCoordinator() as coordinator:
        assert coordinator.start_batch([manifest])
        assert coordinator.wait(timeout=30)
        result = coordinator.result

    assert result is not None
    assert len(result.failed) == 1
    assert result.failed[0].source_path == manifest
    assert manifest.read_text(encoding="utf-8") == original
    assert [p.name for p in tmp_path.iterdir()] == ["Contents.json"]


def test_manifest_without_image_names_is_skipped(tmp_path: Path) -> None:
    manifest = tmp_path / "Contents.json"
    manifest.write_text('{"info":{"version":1}}', encoding="utf-8")

    with ConversionCoordinator() as coordinator:
        assert coordinator.start_batch([manifest])
        assert coordinator.wait(timeout=30)
        result = coordinator.result

    assert result is not None
    assert result.manifests_rewritten == 0
    assert len(result.skipped) == 1
    assert manifest.read_text(encoding="utf-8") == '{"info":{"version":1}}'
