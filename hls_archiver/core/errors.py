"""
异常模块
定义播放列表解析、HTTP 请求、解密与保存过程中使用的异常类型
"""

from typing import Optional


class HLSArchiverError(Exception):
    """所有异常的基类"""


class PlaylistParseError(HLSArchiverError, ValueError):
    """M3U8 文本结构错误"""


class HttpStatusError(HLSArchiverError):
    """HTTP 响应状态码表示失败"""

    def __init__(self, status_code: int, url: str = "", retry_after: Optional[float] = None):
        self.status_code = status_code
        self.url = url
        self.retry_after = retry_after
        super().__init__(f"HTTP {status_code}: {url}")


class StreamSelectionError(HLSArchiverError):
    """无法选择最佳码流"""


class UnsupportedEncryptionError(HLSArchiverError):
    """不支持的加密方法"""


class DecryptionError(HLSArchiverError):
    """解密失败（缺少密钥、IV 或数据不完整）"""


class NameTransformError(HLSArchiverError):
    """文件名中没有可替换的数字部分"""


class OperationCancelled(HLSArchiverError):
    """操作已被取消"""


class AggregateFailure(HLSArchiverError):
    """
    致命错误，包装触发它的原始异常

    inner 保存原始异常，同时以 raise ... from inner 的形式抛出
    """

    def __init__(self, message: str, inner: Optional[BaseException] = None):
        self.inner = inner
        super().__init__(message)


class RetryLimitExceeded(AggregateFailure):
    """连续或累计失败次数超过阈值"""


class RecoveryCallbackMissing(AggregateFailure):
    """需要恢复回调但未注册"""


class RetryDelayMissing(AggregateFailure):
    """没有配置重试延迟，响应中也没有 Retry-After"""
