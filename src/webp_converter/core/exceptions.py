"""项目内使用的自定义异常定义。"""


class WebpConverterError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(WebpConverterError):
    """配置不合法时抛出，启动阶段即终止。"""


class ResolutionError(WebpConverterError):
    """导入路径无法解析为真实文件。"""


class CodecError(WebpConverterError):
    """图片解码或 WebP 编码失败。"""


class ConversionIOError(WebpConverterError):
    """读取、写入或删除文件失败。"""


class ProcessingAborted(WebpConverterError):
    """上游构建失败时抛出，整个流程不会开始。"""
