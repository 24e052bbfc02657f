"""项目内使用的自定义异常定义。"""


class HeifConverterError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(HeifConverterError):
    """配置不合法时抛出。"""


class ManifestError(HeifConverterError):
    """清单文件处理失败。"""


class ManifestLoadError(ManifestError):
    """清单文件无法读取或解析。"""


class ManifestWriteError(ManifestError):
    """清单文件无法序列化或写回。"""


class ImageConversionError(HeifConverterError):
    """图片转换失败。"""


class ImageOpenError(ImageConversionError):
    """源图片或其元数据无法读取。"""


class ImageDestinationError(ImageConversionError):
    """目标文件无法创建或写入。"""
