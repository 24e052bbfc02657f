"""路径分类：图片、清单、目录或无效路径。"""

from __future__ import annotations

import os
import stat
from enum import Enum
from pathlib import Path
from typing import Union

# 可转换的位图扩展名，顺序即清单改写时的替换顺序
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png")
# 资源目录容器（Xcode asset catalog），本身是目录
CONTAINER_EXTENSIONS = (".xcassets", ".imageset")
MANIFEST_EXTENSION = ".json"

SELECTABLE_EXTENSIONS = (*IMAGE_EXTENSIONS, *CONTAINER_EXTENSIONS, MANIFEST_EXTENSION)

PathLike = Union[str, "os.PathLike[str]"]


class PathKind(Enum):
    IMAGE = "image"
    MANIFEST = "manifest"
    DIRECTORY = "directory"
    INVALID = "invalid"


def classify(path: PathLike) -> PathKind:
    """根据文件系统信息与扩展名判断路径类型。

    纯函数，不做缓存；stat 失败视为无效路径。
    """

    try:
        mode = os.stat(path).st_mode
    except (OSError, ValueError):
        return PathKind.INVALID

    if stat.S_ISDIR(mode):
        return PathKind.DIRECTORY
    if not stat.S_ISREG(mode):
        return PathKind.INVALID

    suffix = Path(path).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return PathKind.IMAGE
    if suffix == MANIFEST_EXTENSION:
        return PathKind.MANIFEST
    return PathKind.INVALID
