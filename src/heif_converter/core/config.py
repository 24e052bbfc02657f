"""转换任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass

from heif_converter.core.exceptions import InvalidConfigurationError

# 目标扩展名 -> Pillow 保存格式（由 pillow-heif 注册）
TARGET_FORMATS = {
    "heic": "HEIF",
    "heif": "HEIF",
}


@dataclass(slots=True)
class ConverterConfig:
    """单次批量转换的配置集合。"""

    target_extension: str = "heic"
    quality: int = 90
    max_workers: int = 4
    skip_existing: bool = False
    preserve_metadata: bool = True
    manifest_key: str = "filename"

    @property
    def target_suffix(self) -> str:
        """带点的目标扩展名，例如 ``.heic``。"""

        return "." + normalized_extension(self.target_extension)

    @property
    def target_format(self) -> str:
        return TARGET_FORMATS[normalized_extension(self.target_extension)]


def normalized_extension(value: str) -> str:
    """统一扩展名写法：小写、去掉前导点。"""

    return value.strip().lstrip(".").lower()


def validate_config(config: ConverterConfig) -> ConverterConfig:
    """校验配置，非法时抛出 InvalidConfigurationError。"""

    extension = normalized_extension(config.target_extension)
    if extension not in TARGET_FORMATS:
        supported = ", ".join(sorted(TARGET_FORMATS))
        raise InvalidConfigurationError(f"不支持的目标格式: {config.target_extension}（可选: {supported}）")
    config.target_extension = extension

    if not 0 <= config.quality <= 100:
        raise InvalidConfigurationError(f"quality 必须位于 0~100 之间: {config.quality}")
    if config.max_workers < 1:
        raise InvalidConfigurationError(f"max_workers 必须大于 0: {config.max_workers}")
    if not config.manifest_key:
        raise InvalidConfigurationError("manifest_key 不能为空")
    return config
