"""将进度与状态变更串行化到单一线程执行。"""

from __future__ import annotations

import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Protocol

LOGGER = logging.getLogger(__name__)


class Dispatcher(Protocol):
    def submit(self, fn: Callable[[], None]) -> None:
        """在指定线程上按提交顺序执行 fn。"""


def _run_logged(fn: Callable[[], None]) -> None:
    try:
        fn()
    except Exception:
        LOGGER.exception("进度回调执行异常")


class SerialDispatcher:
    """基于单线程线程池的派发器，用于 CLI 与测试。"""

    def __init__(self, thread_name_prefix: str = "heif-report") -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name_prefix)

    def submit(self, fn: Callable[[], None]) -> None:
        self._executor.submit(_run_logged, fn)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class QueueDispatcher:
    """将回调放入队列，由 UI 线程轮询 ``drain`` 执行。"""

    def __init__(self) -> None:
        self._queue: "queue.Queue[Callable[[], None]]" = queue.Queue()

    def submit(self, fn: Callable[[], None]) -> None:
        self._queue.put(fn)

    def drain(self) -> int:
        """执行当前队列中的全部回调，返回执行数量。"""

        executed = 0
        while True:
            try:
                fn = self._queue.get_nowait()
            except queue.Empty:
                return executed
            _run_logged(fn)
            executed += 1
