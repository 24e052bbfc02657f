"""单张图片转换：读取源图与元数据，写出同目录下的目标格式文件。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from heif_converter.core.classifier import PathKind, classify
from heif_converter.core.config import ConverterConfig
from heif_converter.core.exceptions import ImageConversionError, ImageDestinationError, ImageOpenError
from heif_converter.core.models import JobOutcome, WorkItem

LOGGER = logging.getLogger(__name__)

register_heif_opener()

METADATA_KEYS = ("exif", "icc_profile", "xmp")
# HEIF 编码器可直接接受的模式，其余模式需要先转换
HEIF_MODES = {"RGB", "RGBA"}


def destination_for(path: Path, target_suffix: str) -> Path:
    """去掉源扩展名并追加目标扩展名。"""

    if not target_suffix.startswith("."):
        target_suffix = "." + target_suffix
    return path.with_suffix(target_suffix)


def load_source(path: Path) -> tuple[Image.Image, dict[str, Any]]:
    """加载源图片及其元数据，调用者负责关闭返回的 Image。"""

    try:
        with Image.open(path) as img:
            img.load()
            metadata = {key: _as_bytes(img.info[key]) for key in METADATA_KEYS if img.info.get(key)}
            image = img.copy()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise ImageOpenError(f"无法加载图像: {path}") from exc

    # 元数据只通过显式参数写出，避免编码器从 info 中自动带上
    for key in METADATA_KEYS:
        image.info.pop(key, None)
    return image, metadata


def _as_bytes(value: Any) -> Any:
    # PNG 的 XMP 以 str 形式出现在 info 中
    return value.encode("utf-8") if isinstance(value, str) else value


def _prepare_mode(img: Image.Image) -> Image.Image:
    if img.mode in HEIF_MODES:
        return img

    if img.mode in {"LA", "PA"} or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")

    # L / P / CMYK / I;16 等模式统一转 RGB
    return img.convert("RGB")


def save_image(img: Image.Image, destination: Path, config: ConverterConfig, metadata: dict[str, Any]) -> None:
    """通过 pillow-heif 写出目标文件，失败时清理残留文件。"""

    params: dict[str, Any] = {"quality": config.quality}
    if config.preserve_metadata:
        params.update(metadata)
        if img.mode == "CMYK":
            # CMYK 配置文件不适用于转换后的 RGB 像素
            params.pop("icc_profile", None)

    try:
        _prepare_mode(img).save(destination, format=config.target_format, **params)
    except (OSError, ValueError, TypeError, KeyError) as exc:
        destination.unlink(missing_ok=True)
        raise ImageDestinationError(f"写入文件失败: {destination}") from exc


def convert_image(path: Path, config: ConverterConfig) -> JobOutcome:
    """转换单张图片，任何失败都转换为结果记录而不向上抛出。"""

    item = WorkItem(path=path, kind=PathKind.IMAGE)

    # 遍历与执行之间文件可能已被修改
    if classify(path) is not PathKind.IMAGE:
        return JobOutcome.skipped(item, "不再是可转换的图片")

    destination = destination_for(path, config.target_suffix)
    if config.skip_existing and destination.exists():
        return JobOutcome.skipped(item, f"目标已存在: {destination.name}")

    try:
        image, metadata = load_source(path)
        try:
            save_image(image, destination, config, metadata)
        finally:
            image.close()
    except ImageConversionError as exc:
        LOGGER.warning("转换失败 %s: %s", path.name, exc)
        return JobOutcome.failed(item, exc)

    LOGGER.debug("已转换 %s -> %s", path, destination.name)
    return JobOutcome.success(item, destination)
