"""清单（Contents.json）改写：将 filename 中的图片扩展名替换为目标扩展名。"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Sequence

from heif_converter.core.classifier import IMAGE_EXTENSIONS
from heif_converter.core.config import ConverterConfig
from heif_converter.core.exceptions import ManifestLoadError, ManifestWriteError

LOGGER = logging.getLogger(__name__)


def rewrite_filenames(
    document: Any,
    target_suffix: str,
    extensions: Sequence[str] = IMAGE_EXTENSIONS,
    key: str = "filename",
) -> int:
    """原地改写文档中所有 ``key`` 对应的字符串值，返回改动的数量。

    对象递归处理；数组只递归其中的对象元素，标量与嵌套数组原样保留。
    """

    patterns = [re.compile(re.escape(ext), re.IGNORECASE) for ext in extensions]
    return _rewrite(document, target_suffix, patterns, key)


def _rewrite(node: Any, target_suffix: str, patterns: list[re.Pattern[str]], key: str) -> int:
    changed = 0
    if isinstance(node, dict):
        for name, value in node.items():
            if name == key and isinstance(value, str):
                updated = value
                for pattern in patterns:
                    updated = pattern.sub(target_suffix, updated)
                if updated != value:
                    node[name] = updated
                    changed += 1
            elif isinstance(value, (dict, list)):
                changed += _rewrite(value, target_suffix, patterns, key)
    elif isinstance(node, list):
        for element in node:
            if isinstance(element, dict):
                changed += _rewrite(element, target_suffix, patterns, key)
    return changed


def load_manifest(path: Path) -> dict[str, Any]:
    """读取并解析清单文件，根节点必须是对象。"""

    try:
        with path.open("r", encoding="utf-8") as handle:
            document = json.load(handle)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestLoadError(f"无法解析清单文件: {path}") from exc

    if not isinstance(document, dict):
        raise ManifestLoadError(f"清单根节点不是对象: {path}")
    return document


def save_manifest(document: dict[str, Any], path: Path) -> None:
    """以可读格式序列化并原子替换原文件。"""

    try:
        payload = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
    except (TypeError, ValueError) as exc:
        raise ManifestWriteError(f"无法序列化清单: {path}") from exc

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise ManifestWriteError(f"无法创建临时文件: {path}") from exc

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except OSError as exc:
        Path(tmp_name).unlink(missing_ok=True)
        raise ManifestWriteError(f"写入清单失败: {path}") from exc


def rewrite_manifest(path: Path, config: ConverterConfig) -> int:
    """加载、改写并写回单个清单文件，返回改动的 filename 数量。"""

    document = load_manifest(path)
    changed = rewrite_filenames(document, config.target_suffix, key=config.manifest_key)
    if not changed:
        LOGGER.debug("清单 %s 无需更新，保留原文件", path)
        return 0
    save_manifest(document, path)
    LOGGER.debug("清单 %s 已更新 %d 处 filename", path, changed)
    return changed
