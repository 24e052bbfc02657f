"""批量转换协调器：遍历、分类、并发调度与完成检测。"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Callable, Iterable, Optional

from heif_converter.core.classifier import PathKind, PathLike
from heif_converter.core.config import ConverterConfig, validate_config
from heif_converter.core.exceptions import ManifestError
from heif_converter.core.models import BatchResult, JobOutcome, WorkItem
from heif_converter.core.progress import ConverterState, ProgressCounters, ProgressUpdate
from heif_converter.core.scanner import iter_work_items
from heif_converter.processing.barrier import JoinBarrier
from heif_converter.processing.dispatch import Dispatcher, SerialDispatcher
from heif_converter.processing.image_converter import convert_image, destination_for
from heif_converter.processing.manifest import rewrite_manifest

LOGGER = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressUpdate], None]
CompletionListener = Callable[[BatchResult], None]


class ConversionCoordinator:
    """驱动一次批量转换的状态机。

    遍历与分类在调用 ``start_batch`` 的线程上同步执行；每个图片或清单任务
    提交到有界线程池。``processed_images`` 的递增、状态切换到 COMPLETE
    以及所有监听器回调都经由 ``dispatcher`` 串行执行在同一个线程上。
    单个任务的失败只记录在结果中，不会中断批处理。
    """

    def __init__(
        self,
        config: Optional[ConverterConfig] = None,
        dispatcher: Optional[Dispatcher] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.config = validate_config(config or ConverterConfig())

        self._owns_dispatcher = dispatcher is None
        self._dispatcher: Dispatcher = dispatcher or SerialDispatcher()
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="heif-worker"
        )

        self._state = ConverterState.LAUNCHED
        self._counters = ProgressCounters()
        self._result: Optional[BatchResult] = None
        self._listeners: list[ProgressListener] = []
        self._completion_listeners: list[CompletionListener] = []
        self._closed = False
        self._done = threading.Event()
        self._done.set()

    # ---------------------- 查询与订阅 ---------------------- #

    @property
    def state(self) -> ConverterState:
        return self._state

    @property
    def counters(self) -> ProgressCounters:
        return ProgressCounters(
            total_images=self._counters.total_images,
            processed_images=self._counters.processed_images,
        )

    @property
    def result(self) -> Optional[BatchResult]:
        """最近一次完成的批处理结果。"""

        return self._result

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """注册进度监听器，返回取消订阅函数。"""

        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def subscribe_completion(self, listener: CompletionListener) -> Callable[[], None]:
        self._completion_listeners.append(listener)
        return lambda: self._completion_listeners.remove(listener)

    # ---------------------- 批处理 ---------------------- #

    def start_batch(self, paths: Iterable[PathLike]) -> bool:
        """开始一次批量转换，返回是否真正启动。

        空列表直接忽略，状态与计数保持不变；转换进行中时拒绝新的批次。
        """

        selected = [Path(p) for p in paths]
        if not selected:
            LOGGER.debug("未选择任何路径，忽略")
            return False
        if self._closed:
            raise RuntimeError("协调器已关闭，无法开始新的批次")
        if self._state is ConverterState.CONVERTING:
            LOGGER.warning("转换正在进行中，忽略新的批次")
            return False

        # 每个批次使用独立的完成事件，监听器中启动的下一批不会被上一批误标记为完成
        done = threading.Event()
        self._done = done
        self._counters.reset()
        self._state = ConverterState.CONVERTING
        self._result = None
        self._publish("开始转换")

        batch = BatchResult()
        barrier = JoinBarrier()
        destinations: dict[Path, Path] = {}
        jobs = 0

        LOGGER.info("开始扫描 %d 个输入路径", len(selected))
        try:
            for item in iter_work_items(selected):
                if item.kind is PathKind.IMAGE:
                    # 先计数再调度，显示的总数不会偏小
                    self._counters.total_images += 1
                    destination = destination_for(item.path, self.config.target_suffix).resolve()
                    owner = destinations.setdefault(destination, item.path)
                    if owner != item.path:
                        outcome = JobOutcome.skipped(item, f"目标与 {owner.name} 冲突: {destination.name}")
                        self._dispatcher.submit(partial(self._record, outcome, batch))
                        continue
                self._schedule(item, batch, barrier)
                jobs += 1
        except Exception:
            LOGGER.exception("扫描输入路径时出错，已调度的 %d 个任务将照常完成", jobs)
            raise
        else:
            LOGGER.info("已调度 %d 个任务，其中图片 %d 张", jobs, self._counters.total_images)
            self._publish(f"发现 {self._counters.total_images} 张图片")
        finally:
            barrier.notify(lambda: self._dispatcher.submit(partial(self._finish_batch, batch, done)))
        return True

    def _schedule(self, item: WorkItem, batch: BatchResult, barrier: JoinBarrier) -> None:
        barrier.enter()
        try:
            self._executor.submit(self._run_job, item, batch, barrier)
        except BaseException:
            barrier.leave()
            if item.kind is PathKind.IMAGE:
                self._counters.total_images -= 1
            raise

    def wait(self, timeout: Optional[float] = None) -> bool:
        """阻塞直到当前批次完成（供 CLI 与测试使用）。"""

        return self._done.wait(timeout)

    def close(self) -> None:
        self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        if self._owns_dispatcher and isinstance(self._dispatcher, SerialDispatcher):
            self._dispatcher.shutdown(wait=True)

    def __enter__(self) -> "ConversionCoordinator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ---------------------- 工作线程 ---------------------- #

    def _run_job(self, item: WorkItem, batch: BatchResult, barrier: JoinBarrier) -> None:
        try:
            try:
                outcome = self._execute(item)
            except Exception as exc:
                LOGGER.exception("任务执行异常：%s", item.path)
                outcome = JobOutcome.failed(item, exc)
            self._dispatcher.submit(partial(self._record, outcome, batch))
        finally:
            barrier.leave()

    def _execute(self, item: WorkItem) -> JobOutcome:
        if item.kind is PathKind.IMAGE:
            return convert_image(item.path, self.config)

        try:
            changed = rewrite_manifest(item.path, self.config)
        except ManifestError as exc:
            LOGGER.warning("清单处理失败 %s: %s", item.path, exc)
            return JobOutcome.failed(item, exc)
        if not changed:
            return JobOutcome.skipped(item, "没有需要更新的 filename")
        return JobOutcome.success(item, item.path, message=f"更新 {changed} 处 filename")

    # ---------------------- 派发线程 ---------------------- #

    def _record(self, outcome: JobOutcome, batch: BatchResult) -> None:
        batch.record(outcome)
        if outcome.kind is PathKind.IMAGE:
            # 失败的图片同样计为已处理，完成时 processed == total
            self._counters.processed_images += 1
        self._publish(f"{outcome.status} {outcome.source_path.name}")

    def _finish_batch(self, batch: BatchResult, done: threading.Event) -> None:
        self._state = ConverterState.COMPLETE
        self._result = batch
        LOGGER.info(
            "转换完成：图片 %d 张，清单 %d 个，跳过 %d 个，失败 %d 个",
            batch.images_converted,
            batch.manifests_rewritten,
            len(batch.skipped),
            len(batch.failed),
        )
        try:
            self._emit(self._snapshot("转换完成"))
            for listener in list(self._completion_listeners):
                self._call_listener(listener, batch)
        finally:
            done.set()

    def _publish(self, message: Optional[str] = None) -> None:
        self._dispatcher.submit(lambda: self._emit(self._snapshot(message)))

    def _snapshot(self, message: Optional[str]) -> ProgressUpdate:
        return ProgressUpdate(
            state=self._state,
            processed=self._counters.processed_images,
            total=self._counters.total_images,
            message=message,
        )

    def _emit(self, update: ProgressUpdate) -> None:
        for listener in list(self._listeners):
            self._call_listener(listener, update)

    @staticmethod
    def _call_listener(listener: Callable[[object], None], payload: object) -> None:
        try:
            listener(payload)
        except Exception:
            LOGGER.exception("监听器执行异常")
