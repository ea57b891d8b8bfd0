"""
M3U8解析器模块
负责把 M3U8 文本解析为不可变的 Playlist 对象
支持码流、替代轨道、#EXT-X-KEY 加密信息和媒体序列号
"""

from typing import Callable, Dict, List, Optional

from .crypto import EncryptionInfo, parse_iv_string
from .errors import PlaylistParseError
from .models import AlternateRendition, Playlist, PlaylistVariant

FILE_HEADER = "#EXTM3U"
TAG_VERSION = "#EXT-X-VERSION:"
TAG_STREAM_INFO = "#EXT-X-STREAM-INF:"
TAG_KEY = "#EXT-X-KEY:"
TAG_INDEPENDENT_SEGMENTS = "#EXT-X-INDEPENDENT-SEGMENTS"
TAG_MEDIA_SEQUENCE = "#EXT-X-MEDIA-SEQUENCE:"
TAG_MEDIA = "#EXT-X-MEDIA:"

TAGS = (TAG_VERSION, TAG_STREAM_INFO, TAG_KEY, TAG_INDEPENDENT_SEGMENTS, TAG_MEDIA_SEQUENCE, TAG_MEDIA)


class _PlaylistBuilder:
    """解析过程中使用的可变临时对象，不会离开解析器"""

    def __init__(self):
        self.version: Optional[str] = None
        self.first_media_sequence_number = 0
        self.independent_segments = False
        self.variants: List[dict] = []
        self.alternates: List[AlternateRendition] = []
        self.data_lines: List[str] = []
        self.encryption_info: Optional[EncryptionInfo] = None

    def build(self) -> Playlist:
        return Playlist(
            version=self.version,
            first_media_sequence_number=self.first_media_sequence_number,
            independent_segments=self.independent_segments,
            variants=tuple(PlaylistVariant(**v) for v in self.variants),
            alternates=tuple(self.alternates),
            data_lines=tuple(self.data_lines),
            encryption_info=self.encryption_info,
        )


def parse_attributes(data: str, scratch: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    解析 KEY=VALUE,KEY="VALUE" 形式的属性列表

    引号内的等号和逗号按字面处理，例如 CODECS="avc1,mp4a"。

    Args:
        data: 标签冒号之后的属性文本
        scratch: 可选的复用字典，会先被清空

    Returns:
        Dict[str, str]: 属性字典

    Raises:
        PlaylistParseError: 出现没有键的值
    """
    result = scratch if scratch is not None else {}
    result.clear()

    builder: List[str] = []
    quote_count = 0
    current_key: Optional[str] = None

    for i in range(len(data) + 1):
        c = data[i] if i < len(data) else None

        if c == '"':
            quote_count += 1
        elif c == '=' and quote_count % 2 == 0:
            current_key = ''.join(builder)
            builder.clear()
        elif (c == ',' and quote_count % 2 == 0) or c is None:
            value = ''.join(builder)
            builder.clear()
            if current_key is None:
                raise PlaylistParseError(f"属性值缺少键: {data!r}")
            result[current_key] = value
        else:
            builder.append(c)

    return result


def _parse_int(value: str, field_name: str) -> int:
    try:
        return int(value.strip())
    except ValueError as e:
        raise PlaylistParseError(f"{field_name} 不是整数: {value!r}") from e


class M3U8Parser:
    """M3U8文件解析器"""

    def __init__(self):
        self._handlers: Dict[str, Callable[[_PlaylistBuilder, str, str, Dict[str, str]], None]] = {
            TAG_VERSION: self._parse_version,
            TAG_STREAM_INFO: self._parse_stream_info,
            TAG_KEY: self._parse_key,
            TAG_INDEPENDENT_SEGMENTS: self._parse_independent_segments,
            TAG_MEDIA_SEQUENCE: self._parse_media_sequence,
            TAG_MEDIA: self._parse_media,
        }

    def parse(self, content: str, scratch: Optional[Dict[str, str]] = None) -> Playlist:
        """
        解析 M3U8 文本

        Args:
            content: M3U8 文件内容
            scratch: 可选的属性解析复用字典

        Returns:
            Playlist: 解析结果

        Raises:
            PlaylistParseError: 文件头错误或属性格式错误
        """
        if content is None:
            raise PlaylistParseError("内容为空")
        lines = content.splitlines()
        if not lines or lines[0] != FILE_HEADER:
            raise PlaylistParseError("无效的文件头")

        if scratch is None:
            scratch = {}
        builder = _PlaylistBuilder()

        previous_line: Optional[str] = None
        for line in lines[1:]:
            tag = self._get_tag(line)
            if tag is not None:
                self._handlers[tag](builder, tag, line, scratch)
            elif previous_line is not None and previous_line.startswith(TAG_STREAM_INFO):
                # 码流信息的下一行是该码流的路径
                builder.variants[-1]['path'] = line
            elif line.strip() and not line.startswith('#'):
                builder.data_lines.append(line)
            previous_line = line

        return builder.build()

    @staticmethod
    def _get_tag(line: str) -> Optional[str]:
        for tag in TAGS:
            if line.startswith(tag):
                return tag
        return None

    @staticmethod
    def _parse_version(builder: _PlaylistBuilder, tag: str, line: str, scratch: Dict[str, str]):
        builder.version = line[len(tag):]

    @staticmethod
    def _parse_independent_segments(builder: _PlaylistBuilder, tag: str, line: str, scratch: Dict[str, str]):
        builder.independent_segments = True

    @staticmethod
    def _parse_media_sequence(builder: _PlaylistBuilder, tag: str, line: str, scratch: Dict[str, str]):
        builder.first_media_sequence_number = _parse_int(line[len(tag):], "EXT-X-MEDIA-SEQUENCE")

    @staticmethod
    def _parse_stream_info(builder: _PlaylistBuilder, tag: str, line: str, scratch: Dict[str, str]):
        attrs = parse_attributes(line[len(tag):], scratch)
        variant = {}
        if 'BANDWIDTH' in attrs:
            variant['bandwidth'] = _parse_int(attrs['BANDWIDTH'], 'BANDWIDTH')
        if 'AVERAGE-BANDWIDTH' in attrs:
            variant['average_bandwidth'] = _parse_int(attrs['AVERAGE-BANDWIDTH'], 'AVERAGE-BANDWIDTH')
        if 'NAME' in attrs:
            variant['name'] = attrs['NAME']
        if 'CODECS' in attrs:
            variant['codecs'] = attrs['CODECS']
        if 'RESOLUTION' in attrs:
            width, _, height = attrs['RESOLUTION'].partition('x')
            variant['resolution_width'] = _parse_int(width, 'RESOLUTION')
            variant['resolution_height'] = _parse_int(height, 'RESOLUTION')
        if 'AUDIO' in attrs:
            variant['audio'] = attrs['AUDIO']
        builder.variants.append(variant)

    @staticmethod
    def _parse_media(builder: _PlaylistBuilder, tag: str, line: str, scratch: Dict[str, str]):
        # 只有在 #EXT-X-INDEPENDENT-SEGMENTS 之后出现的替代轨道才会被记录
        if not builder.independent_segments:
            return
        attrs = parse_attributes(line[len(tag):], scratch)
        builder.alternates.append(AlternateRendition(
            path=attrs.get('URI', ""),
            type=attrs.get('TYPE'),
            name=attrs.get('NAME'),
            language=attrs.get('LANGUAGE'),
            group_id=attrs.get('GROUP-ID'),
            default=attrs.get('DEFAULT') == "YES",
            autoselect=attrs.get('AUTOSELECT') == "YES",
        ))

    @staticmethod
    def _parse_key(builder: _PlaylistBuilder, tag: str, line: str, scratch: Dict[str, str]):
        """
        解析 #EXT-X-KEY 标签

        格式示例:
        #EXT-X-KEY:METHOD=AES-128,URI="https://example.com/key.key",IV=0x12345678...
        """
        attrs = parse_attributes(line[len(tag):], scratch)
        method = attrs.get('METHOD')
        if method is None:
            raise PlaylistParseError("#EXT-X-KEY 缺少 METHOD")

        iv = None
        if 'IV' in attrs:
            try:
                iv = parse_iv_string(attrs['IV'])
            except ValueError as e:
                raise PlaylistParseError(f"无效的 IV: {attrs['IV']!r}") from e

        builder.encryption_info = EncryptionInfo(
            method=method,
            uri=attrs.get('URI'),
            iv=iv,
            key_format=attrs.get('KEYFORMAT', "identity"),
        )


def parse_playlist(content: str) -> Playlist:
    """解析 M3U8 文本的便捷函数"""
    return M3U8Parser().parse(content)
