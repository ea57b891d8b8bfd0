"""
HLS Archiver Package
HLS 直播归档工具，支持跟随录制、自顶向下回填、AES 解密、错误分类重试等功能
"""

from .core.parser import M3U8Parser
from .core.config import ArchiveConfig, ConfigTemplates, SaverTiming
from .core.errors import HLSArchiverError
from .core.http import HttpClient
from .core.session import DownloaderSession, SessionGroup
from .core.savers import StandardSaver, TailingSaver, TopDownSaver
from .core.storage import DiskResourceStore, InMemoryResourceStore
from .core.markers import get_manifest_for_directory
from .core.utils import setup_logger, format_time, print_banner

__version__ = "1.0.0"
__all__ = [
    # 基础功能
    "M3U8Parser",
    "ArchiveConfig",
    "ConfigTemplates",
    "SaverTiming",
    "HLSArchiverError",

    # 录制
    "HttpClient",
    "DownloaderSession",
    "SessionGroup",
    "StandardSaver",
    "TailingSaver",
    "TopDownSaver",

    # 存储
    "DiskResourceStore",
    "InMemoryResourceStore",
    "get_manifest_for_directory",

    # 工具函数
    "setup_logger",
    "format_time",
    "print_banner"
]
