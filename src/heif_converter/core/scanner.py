"""目录遍历与待处理路径筛选逻辑。"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator

from heif_converter.core.classifier import PathKind, PathLike, classify
from heif_converter.core.models import WorkItem

LOGGER = logging.getLogger(__name__)


def walk_directory(root: PathLike) -> Iterator[Path]:
    """惰性递归遍历目录，产出所有子文件与子目录（不含根目录本身）。

    无法读取的子树会被跳过；每次调用都会重新读取磁盘。
    """

    def _on_error(exc: OSError) -> None:
        LOGGER.debug("跳过无法读取的目录 %s: %s", exc.filename, exc)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        base = Path(dirpath)
        for name in dirnames:
            yield base / name
        for name in filenames:
            yield base / name


def iter_work_items(paths: Iterable[PathLike]) -> Iterator[WorkItem]:
    """将用户选择的路径展开为图片与清单任务。"""

    seen: set[Path] = set()

    def _accept(path: Path, kind: PathKind) -> Iterator[WorkItem]:
        key = path.resolve()
        if key in seen:
            return
        seen.add(key)
        yield WorkItem(path=path, kind=kind)

    for raw in paths:
        path = Path(raw)
        kind = classify(path)

        if kind is PathKind.DIRECTORY:
            for child in walk_directory(path):
                child_kind = classify(child)
                # 子目录的内容已包含在同一个遍历序列中
                if child_kind in (PathKind.IMAGE, PathKind.MANIFEST):
                    yield from _accept(child, child_kind)
        elif kind in (PathKind.IMAGE, PathKind.MANIFEST):
            yield from _accept(path, kind)
        else:
            LOGGER.debug("忽略无效路径: %s", path)
