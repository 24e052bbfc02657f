"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from heif_converter.core.classifier import PathKind

STATUS_CONVERTED = "converted"
STATUS_REWRITTEN = "rewritten"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass(frozen=True, slots=True)
class WorkItem:
    """遍历阶段得到的可调度路径。"""

    path: Path
    kind: PathKind


@dataclass(slots=True)
class JobOutcome:
    """记录单个任务（图片转换或清单改写）的结果。"""

    source_path: Path
    kind: PathKind
    status: str
    output_path: Optional[Path] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, item: WorkItem, output_path: Path, message: Optional[str] = None) -> "JobOutcome":
        status = STATUS_CONVERTED if item.kind is PathKind.IMAGE else STATUS_REWRITTEN
        return cls(item.path, item.kind, status, output_path=output_path, message=message)

    @classmethod
    def skipped(cls, item: WorkItem, reason: str) -> "JobOutcome":
        return cls(item.path, item.kind, STATUS_SKIPPED, message=reason)

    @classmethod
    def failed(cls, item: WorkItem, error: BaseException | str) -> "JobOutcome":
        return cls(item.path, item.kind, STATUS_FAILED, message=str(error))

    @property
    def is_failure(self) -> bool:
        return self.status == STATUS_FAILED


@dataclass(slots=True)
class BatchResult:
    """一次批量转换的汇总结果。"""

    succeeded: list[JobOutcome] = field(default_factory=list)
    skipped: list[JobOutcome] = field(default_factory=list)
    failed: list[JobOutcome] = field(default_factory=list)

    def record(self, outcome: JobOutcome) -> None:
        if outcome.is_failure:
            self.failed.append(outcome)
        elif outcome.status == STATUS_SKIPPED:
            self.skipped.append(outcome)
        else:
            self.succeeded.append(outcome)

    def all_outcomes(self) -> list[JobOutcome]:
        """返回所有结果记录，方便生成报告。"""

        return [*self.succeeded, *self.skipped, *self.failed]

    @property
    def images_converted(self) -> int:
        return sum(1 for outcome in self.succeeded if outcome.status == STATUS_CONVERTED)

    @property
    def manifests_rewritten(self) -> int:
        return sum(1 for outcome in self.succeeded if outcome.status == STATUS_REWRITTEN)

    def failure_summary(self) -> list[str]:
        """失败任务的可读摘要，没有失败时返回空列表。"""

        return [f"{outcome.source_path}: {outcome.message or '未知错误'}" for outcome in self.failed]
