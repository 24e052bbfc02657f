"""进度更新的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ConverterState(Enum):
    LAUNCHED = "launched"
    CONVERTING = "converting"
    COMPLETE = "complete"


STATE_LABELS = {
    ConverterState.LAUNCHED: "未开始",
    ConverterState.CONVERTING: "转换中",
    ConverterState.COMPLETE: "转换完成",
}


@dataclass(slots=True)
class ProgressCounters:
    """批处理的图片计数，只统计图片任务。"""

    total_images: int = 0
    processed_images: int = 0

    def reset(self) -> None:
        self.total_images = 0
        self.processed_images = 0


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """批处理过程中的进度快照。"""

    state: ConverterState
    processed: int
    total: int
    message: Optional[str] = None

    @property
    def label(self) -> str:
        if self.state is ConverterState.CONVERTING:
            return f"{self.processed} / {self.total}"
        return STATE_LABELS[self.state]
