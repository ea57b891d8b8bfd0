"""
配置模块
定义会话、轮询与重试相关的配置参数
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Dict


@dataclass
class SaverTiming:
    """轮询和重试的时间配置（秒）"""

    # HTTP 500 / 503 的固定重试延迟，None 表示使用响应中的 Retry-After
    http_500_retry_delay: Optional[float] = 10.0
    http_503_retry_delay: Optional[float] = 10.0

    # 单个请求的超时，None 表示使用 connect_timeout / read_timeout
    request_timeout: Optional[float] = None
    # 请求超时后的重试次数
    request_timeout_retries: int = 3

    # 两次拉取播放列表之间的间隔
    playlist_delay: float = 1.0
    # 自顶向下回填时两次尝试之间的间隔
    top_down_delay: float = 0.5


@dataclass
class ArchiveConfig:
    """归档配置类"""

    # 主播放列表 URL
    url: str = ""
    # 资源所属的归档 ID
    artifact_id: str = "stream"

    # 请求头配置
    referrer: Optional[str] = None
    origin: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=lambda: {
        'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36',
        'Accept': '*/*',
        'Accept-Language': 'en-US,en;q=0.9',
    })

    # 码流选择：优先分辨率而非带宽
    prioritize_resolution: bool = False

    # ============ 加密相关配置 ============
    # 是否解密加密的片段
    decrypt: bool = True

    # 已登记的片段是否跳过（否则删除登记后重新下载）
    skip_existing_segments: bool = True
    # 是否使用资源登记
    use_registration: bool = True

    # 重试配置，None 表示不限制
    max_consecutive_retries: Optional[int] = None
    max_total_retries: Optional[int] = None

    timing: Optional[SaverTiming] = None

    # 超时配置
    connect_timeout: int = 10
    read_timeout: int = 30

    # 下载块大小
    chunk_size: int = 8192

    # 其他配置
    verify_ssl: bool = False
    disable_waiting_log: bool = False
    show_progress: bool = True
    enable_logging: bool = True

    def __post_init__(self):
        """初始化后处理：修正非法数值"""
        if self.max_consecutive_retries is not None and self.max_consecutive_retries < 0:
            self.max_consecutive_retries = 0
        if self.max_total_retries is not None and self.max_total_retries < 0:
            self.max_total_retries = 0
        if self.timing is not None:
            if self.timing.request_timeout_retries < 0:
                self.timing = replace(self.timing, request_timeout_retries=1)
            if self.timing.request_timeout is not None and self.timing.request_timeout < 0:
                self.timing = replace(self.timing, request_timeout=None)

    @property
    def resolved_timing(self) -> SaverTiming:
        """实际使用的时间配置"""
        return self.timing if self.timing is not None else SaverTiming()

    @property
    def request_timeout(self):
        """传给 requests 的超时参数"""
        timing = self.resolved_timing
        if timing.request_timeout is not None:
            return timing.request_timeout
        return (self.connect_timeout, self.read_timeout)

    def update_headers(self, extra_headers: Dict[str, str]):
        """更新请求头"""
        self.headers.update(extra_headers)

    def to_dict(self):
        """转换为字典"""
        timing = self.resolved_timing
        return {
            'url': self.url,
            'artifact_id': self.artifact_id,
            'referrer': self.referrer,
            'origin': self.origin,
            'headers': self.headers,
            'prioritize_resolution': self.prioritize_resolution,
            'decrypt': self.decrypt,
            'skip_existing_segments': self.skip_existing_segments,
            'use_registration': self.use_registration,
            'max_consecutive_retries': self.max_consecutive_retries,
            'max_total_retries': self.max_total_retries,
            'timing': {
                'http_500_retry_delay': timing.http_500_retry_delay,
                'http_503_retry_delay': timing.http_503_retry_delay,
                'request_timeout': timing.request_timeout,
                'request_timeout_retries': timing.request_timeout_retries,
                'playlist_delay': timing.playlist_delay,
                'top_down_delay': timing.top_down_delay,
            },
            'connect_timeout': self.connect_timeout,
            'read_timeout': self.read_timeout,
            'chunk_size': self.chunk_size,
            'verify_ssl': self.verify_ssl,
            'disable_waiting_log': self.disable_waiting_log,
            'show_progress': self.show_progress,
            'enable_logging': self.enable_logging,
        }


# 预设配置模板
class ConfigTemplates:
    """配置模板"""

    @staticmethod
    def live(url: str = "", artifact_id: str = "stream"):
        """直播录制配置：不限制重试次数"""
        return ArchiveConfig(
            url=url,
            artifact_id=artifact_id,
            timing=SaverTiming(http_500_retry_delay=5.0, http_503_retry_delay=5.0),
        )

    @staticmethod
    def stable(url: str = "", artifact_id: str = "stream"):
        """稳定配置"""
        return ArchiveConfig(
            url=url,
            artifact_id=artifact_id,
            max_consecutive_retries=10,
            max_total_retries=100,
            connect_timeout=15,
            read_timeout=60,
            timing=SaverTiming(request_timeout_retries=5),
        )

    @staticmethod
    def strict(url: str = "", artifact_id: str = "stream"):
        """严格配置：少量失败即终止"""
        return ArchiveConfig(
            url=url,
            artifact_id=artifact_id,
            max_consecutive_retries=2,
            max_total_retries=5,
            timing=SaverTiming(request_timeout_retries=1),
        )

    @staticmethod
    def no_decrypt(url: str = "", artifact_id: str = "stream"):
        """不解密配置（仅保存原始加密数据）"""
        return ArchiveConfig(
            url=url,
            artifact_id=artifact_id,
            decrypt=False,
        )
