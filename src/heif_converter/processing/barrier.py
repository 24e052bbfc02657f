"""计数汇合屏障：统计未完成任务，计数归零时触发一次回调。"""

from __future__ import annotations

import threading
from typing import Callable, Optional


class JoinBarrier:
    """类似 wait-group 的汇合屏障。

    ``enter`` 必须先于对应的 ``leave`` 调用；``notify`` 注册的回调只触发一次，
    在计数为零时（或注册时已为零）于最后一个 ``leave`` 的线程上执行。
    注册回调之前出现的短暂归零不会触发任何东西。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outstanding = 0
        self._callback: Optional[Callable[[], None]] = None

    @property
    def outstanding(self) -> int:
        with self._lock:
            return self._outstanding

    def enter(self) -> None:
        with self._lock:
            self._outstanding += 1

    def leave(self) -> None:
        with self._lock:
            if self._outstanding <= 0:
                raise RuntimeError("leave() 调用次数多于 enter()")
            self._outstanding -= 1
            callback = self._take_callback_if_done()
        if callback is not None:
            callback()

    def notify(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._callback is not None:
                raise RuntimeError("汇合回调已注册")
            self._callback = callback
            ready = self._take_callback_if_done()
        if ready is not None:
            ready()

    def _take_callback_if_done(self) -> Optional[Callable[[], None]]:
        if self._outstanding != 0 or self._callback is None:
            return None
        callback, self._callback = self._callback, None
        return callback
