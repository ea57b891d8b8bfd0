"""
HLS Archiver Core Module
核心录制功能模块
"""

from .parser import M3U8Parser, parse_attributes, parse_playlist
from .models import (
    AlternateRendition,
    ItemNo,
    Playlist,
    PlaylistVariant,
    SegmentSettings
)
from .config import ArchiveConfig, ConfigTemplates, SaverTiming
from .crypto import (
    EncryptionInfo,
    KeyManager,
    AESDecryptor,
    create_decryptor
)
from .errors import (
    HLSArchiverError,
    PlaylistParseError,
    HttpStatusError,
    StreamSelectionError,
    UnsupportedEncryptionError,
    DecryptionError,
    NameTransformError,
    OperationCancelled,
    AggregateFailure,
    RetryLimitExceeded,
    RecoveryCallbackMissing,
    RetryDelayMissing
)
from .http import HttpClient, HttpResponse
from .storage import (
    ResourceKey,
    CommittableStream,
    ResourceStore,
    InMemoryResourceStore,
    DiskResourceStore
)
from .resources import ResourceInfo, UrlResource, EncryptedResource, SaverResource
from .session import DownloaderSession, SessionGroup, select_stream, select_alternates
from .processor import (
    FailureAction,
    PassResult,
    PassOutcome,
    PlaylistElementProcessor,
    SegmentDownloadElementProcessor,
    SegmentStreamElementProcessor,
    ExtraSaverOperation,
    PlaylistProcessor
)
from .savers import Saver, StandardSaver, TailingSaver, TopDownSaver
from .naming import (
    translate_name_default,
    translate_name_match_length,
    extract_number_from_name,
    try_extract_number_from_name
)
from .markers import MarkerFileInfo, MarkerManifest, get_manifest_for_directory
from .progress import ProgressSink, TqdmProgressSink, create_progress_factory
from .utils import (
    RetryHandler,
    Stopwatch,
    URLProcessor,
    setup_logger,
    create_session,
    extract_filename_from_url,
    format_time,
    print_banner
)

__all__ = [
    # 解析
    "M3U8Parser",
    "parse_attributes",
    "parse_playlist",
    "AlternateRendition",
    "ItemNo",
    "Playlist",
    "PlaylistVariant",
    "SegmentSettings",

    # 配置
    "ArchiveConfig",
    "ConfigTemplates",
    "SaverTiming",

    # 加密支持
    "EncryptionInfo",
    "KeyManager",
    "AESDecryptor",
    "create_decryptor",

    # 异常
    "HLSArchiverError",
    "PlaylistParseError",
    "HttpStatusError",
    "StreamSelectionError",
    "UnsupportedEncryptionError",
    "DecryptionError",
    "NameTransformError",
    "OperationCancelled",
    "AggregateFailure",
    "RetryLimitExceeded",
    "RecoveryCallbackMissing",
    "RetryDelayMissing",

    # HTTP 与存储
    "HttpClient",
    "HttpResponse",
    "ResourceKey",
    "CommittableStream",
    "ResourceStore",
    "InMemoryResourceStore",
    "DiskResourceStore",
    "ResourceInfo",
    "UrlResource",
    "EncryptedResource",
    "SaverResource",

    # 会话与保存器
    "DownloaderSession",
    "SessionGroup",
    "select_stream",
    "select_alternates",
    "FailureAction",
    "PassResult",
    "PassOutcome",
    "PlaylistElementProcessor",
    "SegmentDownloadElementProcessor",
    "SegmentStreamElementProcessor",
    "ExtraSaverOperation",
    "PlaylistProcessor",
    "Saver",
    "StandardSaver",
    "TailingSaver",
    "TopDownSaver",

    # 回填
    "translate_name_default",
    "translate_name_match_length",
    "extract_number_from_name",
    "try_extract_number_from_name",
    "MarkerFileInfo",
    "MarkerManifest",
    "get_manifest_for_directory",

    # 进度显示
    "ProgressSink",
    "TqdmProgressSink",
    "create_progress_factory",

    # 工具函数
    "RetryHandler",
    "Stopwatch",
    "URLProcessor",
    "setup_logger",
    "create_session",
    "extract_filename_from_url",
    "format_time",
    "print_banner"
]
