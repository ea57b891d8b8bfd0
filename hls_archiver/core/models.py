"""
播放列表数据模型
解析结果一经创建即不可变
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from .crypto import EncryptionInfo


@dataclass(frozen=True)
class PlaylistVariant:
    """#EXT-X-STREAM-INF 描述的一个码流"""
    path: str = ""
    bandwidth: int = 0
    average_bandwidth: int = 0
    name: Optional[str] = None
    codecs: Optional[str] = None
    resolution_width: int = 0
    resolution_height: int = 0
    audio: Optional[str] = None  # 音频组 ID

    @property
    def resolution_area(self) -> int:
        return self.resolution_width * self.resolution_height

    @property
    def effective_bandwidth(self) -> int:
        return self.average_bandwidth or self.bandwidth


@dataclass(frozen=True)
class AlternateRendition:
    """#EXT-X-MEDIA 描述的替代轨道"""
    path: str = ""
    type: Optional[str] = None
    name: Optional[str] = None
    language: Optional[str] = None
    group_id: Optional[str] = None
    default: bool = False
    autoselect: bool = False


@dataclass(frozen=True)
class Playlist:
    """
    一次解析得到的播放列表快照

    data_lines 的顺序即片段的时间顺序，第 i 项的媒体序列号为
    first_media_sequence_number + i，仅对本快照有效。
    """
    version: Optional[str] = None
    first_media_sequence_number: int = 0
    independent_segments: bool = False
    variants: Tuple[PlaylistVariant, ...] = ()
    alternates: Tuple[AlternateRendition, ...] = ()
    data_lines: Tuple[str, ...] = ()
    encryption_info: Optional[EncryptionInfo] = None

    def media_sequence_number(self, index: int) -> int:
        return self.first_media_sequence_number + index

    def is_encrypted(self) -> bool:
        return self.encryption_info is not None and self.encryption_info.is_encrypted()


@dataclass(frozen=True)
class SegmentSettings:
    """
    单个片段的处理设置

    Args:
        skip: 跳过该片段
        disable_decryption: 不解密该片段
        write_marker_file: 写入记录媒体序列号的标记文件
    """
    skip: bool = False
    disable_decryption: bool = False
    write_marker_file: bool = True


@dataclass(frozen=True)
class ItemNo:
    """片段在本轮播放列表中的位置（从 1 开始）"""
    index: int
    total: int = field(default=0)

    def message(self) -> str:
        if self.total > 0:
            return f"{self.index}/{self.total}"
        return str(self.index)
