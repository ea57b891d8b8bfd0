"""
下载会话模块
负责码流选择、密钥处理，以及单个片段的下载、解密和登记
"""

import io
import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import BinaryIO, Callable, List, Optional, Tuple
from urllib.parse import urljoin

import requests

from .config import ArchiveConfig, SaverTiming
from .crypto import KeyManager
from .errors import StreamSelectionError
from .models import AlternateRendition, Playlist, PlaylistVariant, SegmentSettings
from .naming import translate_name_default
from .parser import M3U8Parser
from .resources import EncryptedResource, ResourceInfo, UrlResource
from .savers import StandardSaver, TailingSaver, TopDownSaver
from .storage import ResourceKey, ResourceStore
from .utils import check_cancelled, extract_filename_from_url

_BPS_PATTERN = re.compile(r'(?P<count>\d+)[-_]?\w?bps')

# 标记文件目录：每个已下载片段对应一个文件，内容为媒体序列号
MARKER_DIRECTORY = "vxf"
# 自顶向下回填结束时写入的标记
END_MARKER_FILE = "vxf_finito"


def select_stream(variants, prioritize_resolution: bool = False) -> PlaylistVariant:
    """
    从主播放列表的码流中选择一个

    所有码流都有 AVERAGE-BANDWIDTH 时按平均带宽比较，否则所有码流都有
    BANDWIDTH 时按带宽比较；prioritize_resolution 为 True 时分辨率优先。

    Args:
        variants: 码流列表（顺序无意义）
        prioritize_resolution: 是否优先分辨率

    Returns:
        PlaylistVariant: 选中的码流

    Raises:
        StreamSelectionError: 带宽信息不完整，无法比较
    """
    variants = list(variants)
    if not variants:
        raise StreamSelectionError("播放列表中没有码流")

    if all(v.average_bandwidth != 0 for v in variants):
        metric: Callable[[PlaylistVariant], int] = lambda v: v.average_bandwidth
    elif all(v.bandwidth != 0 for v in variants):
        metric = lambda v: v.bandwidth
    else:
        raise StreamSelectionError("无法选择最佳码流 (failed to choose best stream)")

    if prioritize_resolution:
        return max(variants, key=lambda v: (v.resolution_area, metric(v)))
    return max(variants, key=lambda v: (metric(v), v.resolution_area))


def _advertised_bps(path: str) -> int:
    match = _BPS_PATTERN.search(path)
    return int(match.group('count')) if match else 0


def select_alternates(master: Playlist, variant: PlaylistVariant) -> List[AlternateRendition]:
    """
    选择与码流配套的音频轨道

    优先 DEFAULT=YES 的轨道，否则选择路径中标注码率（如 128kbps）最高的轨道。
    """
    if not master.independent_segments or variant.audio is None:
        return []
    candidates = [a for a in master.alternates if a.group_id == variant.audio and a.type == "AUDIO"]
    for candidate in candidates:
        if candidate.default:
            return [candidate]
    if candidates:
        return [max(candidates, key=lambda a: _advertised_bps(a.path))]
    return []


@dataclass(frozen=True)
class _SubStreamSelection:
    master_playlist: Playlist
    primary_url: str
    alternate_urls: Tuple[str, ...]


@dataclass(frozen=True)
class SessionGroup:
    """主码流会话及其需要同时录制的替代轨道会话"""
    primary: 'DownloaderSession'
    alternates: Tuple['DownloaderSession', ...]
    master_playlist: Playlist


class DownloaderSession:
    """下载会话 - 持有选中的码流地址和不断更新的加密信息"""

    def __init__(self, http_client, store: ResourceStore, config: ArchiveConfig, main_url: str,
                 playlist: Playlist, logger: Optional[logging.Logger] = None,
                 cancel_event: Optional[threading.Event] = None, name: str = "M3U"):
        self.http_client = http_client
        self.store = store
        self.config = config
        self.main_url = main_url
        self.playlist = playlist
        self.encryption_info = playlist.encryption_info
        self.logger = logger or logging.getLogger(__name__)
        self.cancel_event = cancel_event
        self.name = name
        # 是否与其他会话同时录制
        self.is_concurrent = False
        # 替代轨道会话在主播放列表替代轨道中的序号，主会话为 None
        self.alternate_index: Optional[int] = None
        self.disable_waiting_log = config.disable_waiting_log
        self.use_registration = config.use_registration
        self.parser = M3U8Parser()
        self.key_manager = KeyManager(http_client, self.logger)

    @property
    def resolved_timing(self) -> SaverTiming:
        return self.config.resolved_timing

    # ==================== 打开会话 ====================

    @classmethod
    def open(cls, http_client, store: ResourceStore, config: ArchiveConfig,
             logger: Optional[logging.Logger] = None,
             cancel_event: Optional[threading.Event] = None) -> SessionGroup:
        """
        打开会话：拉取主播放列表、选择码流、拉取子播放列表并下载密钥

        Args:
            http_client: HTTP 客户端
            store: 资源存储
            config: 归档配置
            logger: 日志记录器
            cancel_event: 取消信号

        Returns:
            SessionGroup: 主会话与替代轨道会话

        Raises:
            HttpStatusError: 服务器返回失败状态码
            PlaylistParseError: 播放列表格式错误
            StreamSelectionError: 无法选择码流
        """
        logger = logger or logging.getLogger(__name__)
        logger.info(
            f"连续重试上限 {config.max_consecutive_retries if config.max_consecutive_retries is not None else '<未指定>'}, "
            f"累计重试上限 {config.max_total_retries if config.max_total_retries is not None else '<未指定>'}")
        logger.info("获取码流信息...")
        selection = cls._select_sub_streams(http_client, config, logger, cancel_event)

        logger.info("获取子码流信息...")
        primary = cls._create(http_client, store, config, selection.primary_url, logger, cancel_event)
        alternates = []
        for i, alternate_url in enumerate(selection.alternate_urls):
            alternate = cls._create(http_client, store, config, alternate_url, logger, cancel_event)
            alternate.is_concurrent = True
            alternate.name = f"M3U-Alt-{i}"
            alternate.alternate_index = i
            alternates.append(alternate)
        if alternates:
            primary.is_concurrent = True
            primary.name = "M3U-Primary"
        return SessionGroup(primary, tuple(alternates), selection.master_playlist)

    @staticmethod
    def _fetch_text(http_client, url: str, config: ArchiveConfig,
                    cancel_event: Optional[threading.Event]) -> str:
        check_cancelled(cancel_event)
        with http_client.get(url, referrer=config.referrer, origin=config.origin) as response:
            response.raise_for_status()
            return response.text

    @classmethod
    def _select_sub_streams(cls, http_client, config: ArchiveConfig, logger: logging.Logger,
                            cancel_event: Optional[threading.Event]) -> _SubStreamSelection:
        master = M3U8Parser().parse(cls._fetch_text(http_client, config.url, config, cancel_event))
        if not master.variants and master.data_lines:
            logger.info("不是主播放列表，直接使用该地址")
            return _SubStreamSelection(master, config.url, ())

        variant = select_stream(master.variants, config.prioritize_resolution)
        logger.info(
            f"选择码流 {variant.path} ({variant.effective_bandwidth} b/s, "
            f"{variant.resolution_width}x{variant.resolution_height})")
        primary_url = urljoin(config.url, variant.path)

        alternate_urls = []
        for alternate in select_alternates(master, variant):
            logger.info(f"选择替代轨道 {alternate.path} ({alternate.type}, {alternate.language}, {alternate.name})")
            alternate_urls.append(urljoin(config.url, alternate.path))
        return _SubStreamSelection(master, primary_url, tuple(alternate_urls))

    @classmethod
    def _create(cls, http_client, store: ResourceStore, config: ArchiveConfig, main_url: str,
                logger: logging.Logger, cancel_event: Optional[threading.Event]) -> 'DownloaderSession':
        playlist = M3U8Parser().parse(cls._fetch_text(http_client, main_url, config, cancel_event))
        session = cls(http_client, store, config, main_url, playlist, logger, cancel_event)
        session._load_key()
        return session

    def _load_key(self):
        """下载子播放列表声明的密钥"""
        ei = self.encryption_info
        if ei is None:
            return
        self.logger.info(f"[{self.name}] 加密方法 {ei.method}")
        if ei.iv is not None:
            self.logger.info(f"[{self.name}] IV {ei.iv.hex().upper()}")
        if ei.uri is None or ei.uri.startswith("skd://"):
            return
        self.logger.info(f"[{self.name}] 下载密钥...")
        check_cancelled(self.cancel_event)
        key = self.key_manager.get_key(urljoin(self.main_url, ei.uri), self.config.referrer, self.config.origin)
        self.encryption_info = ei.with_key(key)
        self.playlist = replace(self.playlist, encryption_info=self.encryption_info)

    def set_config(self, config: ArchiveConfig):
        """
        重新选择码流并更新配置（例如 403 之后刷新签名地址）

        Raises:
            HttpStatusError: 服务器返回失败状态码
            StreamSelectionError: 无法选择码流
        """
        selection = self._select_sub_streams(self.http_client, config, self.logger, self.cancel_event)
        if self.alternate_index is None:
            self.main_url = selection.primary_url
        elif self.alternate_index < len(selection.alternate_urls):
            self.main_url = selection.alternate_urls[self.alternate_index]
        else:
            raise StreamSelectionError(f"替代轨道 {self.alternate_index} 已不存在")
        self.config = config
        # 签名地址刷新后旧的密钥地址可能失效
        self.key_manager.clear_cache()
        self.disable_waiting_log = config.disable_waiting_log
        self.use_registration = config.use_registration

    # ==================== 播放列表 ====================

    def fetch_playlist(self) -> Playlist:
        """
        拉取当前码流的播放列表

        Raises:
            HttpStatusError: 服务器返回失败状态码
            PlaylistParseError: 播放列表格式错误
        """
        return self.parser.parse(self._fetch_text(self.http_client, self.main_url, self.config, self.cancel_event))

    def merge_encryption(self, playlist: Playlist) -> Playlist:
        """
        加密方法与会话当前方法相同时，沿用会话已有的密钥和 IV

        Returns:
            Playlist: 补齐密钥后的新快照（无需补齐时返回原对象）
        """
        current = self.encryption_info
        new = playlist.encryption_info
        if current is None or new is None or not current.is_encrypted() or not new.is_encrypted():
            return playlist
        if current.method != new.method:
            return playlist
        merged = new.merge_forward(current)
        self.encryption_info = merged
        return replace(playlist, encryption_info=merged)

    def resolve_url(self, entry: str) -> str:
        """把播放列表中的条目解析为绝对 URL"""
        return urljoin(self.main_url, entry)

    # ==================== 辅助文件 ====================

    def write_ancillary_file(self, file: str, data: bytes, path: str = ""):
        """在归档目录下写入一个小文件"""
        key = ResourceKey(self.config.artifact_id, file, path)
        with self.store.create_output_stream(key) as stream:
            stream.write(data)
            stream.commit()

    def write_key_material(self):
        """把加密信息写入 keyformat.txt、method.txt、key.bin、iv.bin"""
        ei = self.encryption_info
        if ei is None:
            return
        self.write_ancillary_file("keyformat.txt", ei.key_format.encode('utf-8'))
        self.write_ancillary_file("method.txt", ei.method.encode('utf-8'))
        if ei.key is not None:
            self.write_ancillary_file("key.bin", ei.key)
        if ei.iv is not None:
            self.write_ancillary_file("iv.bin", ei.iv)

    def write_end_marker(self):
        self.write_ancillary_file(END_MARKER_FILE, b"")

    # ==================== 片段 ====================

    @staticmethod
    def get_file_name(url: str) -> str:
        """获取 URL 对应的文件名"""
        return extract_filename_from_url(url)

    def get_resource_key(self, url: str) -> ResourceKey:
        return ResourceKey(self.config.artifact_id, self.get_file_name(url))

    def download_segment(self, url: str, playlist: Optional[Playlist] = None,
                         media_sequence_number: Optional[int] = None,
                         segment_settings: Optional[SegmentSettings] = None) -> bool:
        """
        下载一个片段并登记

        Args:
            url: 片段绝对 URL
            playlist: 片段所在的播放列表快照，None 表示使用会话当前的加密信息
            media_sequence_number: 媒体序列号（没有显式 IV 时用于解密）
            segment_settings: 片段设置

        Returns:
            bool: 是否实际下载（已登记并跳过时为 False）

        Raises:
            HttpStatusError: 服务器返回失败状态码
            UnsupportedEncryptionError: 加密方法不受支持
            DecryptionError: 解密失败
        """
        key = self.get_resource_key(url)
        if self.use_registration and self.store.exists(key):
            if self.config.skip_existing_segments:
                self.logger.debug(f"[{self.name}] {key.file} 已存在，跳过")
                return False
            self.store.remove(key)

        resource = self._get_resource(key, url, playlist, media_sequence_number, segment_settings)
        with self.store.create_output_stream(key) as stream:
            self._export_with_retry(resource, stream)
            stream.commit()

        if media_sequence_number is not None and (segment_settings is None or segment_settings.write_marker_file):
            self.write_ancillary_file(key.file, str(media_sequence_number).encode('utf-8'), MARKER_DIRECTORY)

        if self.use_registration:
            self.store.add(key, resource.to_metadata())
        return True

    def stream_segment(self, target: BinaryIO, url: str, playlist: Optional[Playlist] = None,
                       media_sequence_number: Optional[int] = None,
                       segment_settings: Optional[SegmentSettings] = None):
        """
        把一个片段写入外部输出流（不登记）

        片段先完整写入内存，成功后再写到 target，失败时 target 不会留下半个片段。
        """
        key = self.get_resource_key(url)
        resource = self._get_resource(key, url, playlist, media_sequence_number, segment_settings)
        buffer = io.BytesIO()
        self._export_with_retry(resource, buffer)
        target.write(buffer.getvalue())

    def _get_resource(self, key: ResourceKey, url: str, playlist: Optional[Playlist],
                      media_sequence_number: Optional[int],
                      segment_settings: Optional[SegmentSettings]) -> ResourceInfo:
        resource: ResourceInfo = UrlResource(
            self.http_client, url, key,
            referrer=self.config.referrer,
            origin=self.config.origin,
            timeout=self.config.request_timeout,
            chunk_size=self.config.chunk_size,
            cancel_event=self.cancel_event,
        )
        ei = playlist.encryption_info if playlist is not None else self.encryption_info
        if ei is None or not ei.is_encrypted():
            return resource
        if self.config.decrypt and not (segment_settings is not None and segment_settings.disable_decryption):
            resource = EncryptedResource(ei, resource, media_sequence_number)
        return resource

    def _export_with_retry(self, resource: ResourceInfo, target: BinaryIO):
        """导出资源，读取超时时回到起始位置重试"""
        max_retries = self.resolved_timing.request_timeout_retries
        retries = 0
        initial_position = target.tell() if target.seekable() else None
        while True:
            check_cancelled(self.cancel_event)
            try:
                resource.export_stream(target)
                return
            except (requests.Timeout, requests.ConnectionError) as e:
                if retries >= max_retries:
                    raise
                retries += 1
                self.logger.warning(f"[{self.name}] 请求超时，重试 {retries}/{max_retries}")
                if initial_position is None:
                    raise OSError("输出流不可定位，无法重试") from e
                target.seek(initial_position)
                target.truncate(initial_position)

    # ==================== 保存器 ====================

    def create_standard_saver(self, one_off: bool, timeout: float) -> StandardSaver:
        """创建基础保存器"""
        return StandardSaver(self, one_off, timeout)

    def create_tailing_saver(self, one_off: bool, timeout: float, segment_filter=None,
                             extra_operation=None) -> TailingSaver:
        """创建支持片段过滤和空闲时附加操作的保存器"""
        return TailingSaver(self, one_off, timeout, segment_filter, extra_operation)

    def create_top_down_saver(self, top: int, top_msn: Optional[int] = None,
                              name_transform=translate_name_default) -> TopDownSaver:
        """创建自顶向下（按编号递减）回填保存器"""
        return TopDownSaver(self, top, top_msn, name_transform)
