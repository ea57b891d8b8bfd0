"""
保存器模块
基础保存器、带过滤的跟随保存器，以及按编号递减回填的自顶向下保存器
"""

import logging
import time
from collections import deque
from enum import Enum
from typing import BinaryIO, Callable, Deque, Optional, Set, Tuple, Union
from urllib.parse import urlsplit, urlunsplit

from .errors import HttpStatusError, NameTransformError
from .models import Playlist, SegmentSettings
from .naming import translate_name_default
from .processor import (
    ExtraSaverOperation,
    PlaylistProcessor,
    SegmentDownloadElementProcessor,
    SegmentStreamElementProcessor,
)
from .utils import Stopwatch, check_cancelled, wait_or_cancel


class Saver(PlaylistProcessor):
    """保存器基类"""

    def run(self):
        """把片段保存到资源存储"""
        raise NotImplementedError

    def export(self, target: BinaryIO):
        """把片段依次写入 target"""
        raise NotImplementedError(f"{type(self).__name__} 不支持导出到输出流")


class StandardSaver(Saver):
    """
    基础保存器

    每轮取出尚未处理的条目并按顺序下载，遇到 HTTP 错误时分类处理后重新读取播放列表。
    """

    def __init__(self, session, one_off: bool, timeout: float,
                 logger: Optional[logging.Logger] = None, clock: Callable[[], float] = time.monotonic):
        super().__init__(session, logger, clock)
        self.one_off = one_off
        self.timeout = timeout

    def run(self):
        self._operate(None)

    def export(self, target: BinaryIO):
        self._operate(target)

    def _operate(self, target: Optional[BinaryIO]):
        self.consecutive_fail_counter = 0
        self.total_fail_counter = 0
        seen: Set[str] = set()
        stopwatch = Stopwatch(self.clock)
        stopwatch.start()
        timing = self.session.resolved_timing

        while True:
            check_cancelled(self.cancel_event)
            try:
                if self.heartbeat_callback is not None:
                    self.heartbeat_callback()
                self.logger.info(f"[{self.session.name}] 读取播放列表...")
                playlist = self.session.merge_encryption(self.session.fetch_playlist())

                entries = [(i, entry) for i, entry in enumerate(playlist.data_lines) if entry not in seen]
                self.logger.info(f"[{self.session.name}] {len(entries)} 个新片段...")
                if entries:
                    stopwatch.restart()
                elif stopwatch.elapsed >= self.timeout:
                    self.logger.info(f"[{self.session.name}] {self.timeout} 秒内没有新片段，停止")
                    return

                for index, entry in entries:
                    check_cancelled(self.cancel_event)
                    url = self.session.resolve_url(entry)
                    media_sequence_number = playlist.media_sequence_number(index)
                    self.logger.info(f"[{self.session.name}] 下载片段 {entry}...")
                    if target is not None:
                        self.session.stream_segment(target, url, playlist, media_sequence_number)
                    else:
                        self.session.download_segment(url, playlist, media_sequence_number)
                    seen.add(entry)
                    self.consecutive_fail_counter = 0

                if self.one_off:
                    return
                wait_or_cancel(timing.playlist_delay, self.cancel_event)
            except HttpStatusError as e:
                self.handle_request_failure(e)


class TailingSaver(Saver):
    """跟随保存器：支持片段过滤和空闲时的附加操作（例如自顶向下回填）"""

    def __init__(self, session, one_off: bool, timeout: float,
                 segment_filter: Optional[Callable[[str], SegmentSettings]] = None,
                 extra_operation: Optional[ExtraSaverOperation] = None,
                 logger: Optional[logging.Logger] = None, clock: Callable[[], float] = time.monotonic):
        super().__init__(session, logger, clock)
        self.one_off = one_off
        self.timeout = timeout
        self.segment_filter = segment_filter
        self.extra_operation = extra_operation

    def run(self):
        self.process_playlist(self.one_off, self.timeout, SegmentDownloadElementProcessor(self.session),
                              self.segment_filter, self.extra_operation)

    def export(self, target: BinaryIO):
        self.process_playlist(self.one_off, self.timeout, SegmentStreamElementProcessor(self.session, target),
                              self.segment_filter, self.extra_operation)


class _ElementResult(Enum):
    DONE = "done"
    RETRY = "retry"
    ENDED = "ended"


class TopDownSaver(Saver, ExtraSaverOperation):
    """
    自顶向下保存器

    以播放列表第一个条目为模板，把文件名中的编号从 top 依次递减到 0 进行下载，
    直到服务器返回 404。既可以单独运行，也可以作为跟随保存器的附加操作。
    """

    def __init__(self, session, top: int, top_msn: Optional[int] = None,
                 name_transform: Callable[[str, Union[int, str]], str] = translate_name_default,
                 logger: Optional[logging.Logger] = None, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            session: 下载会话
            top: 起始编号
            top_msn: 起始编号对应的媒体序列号，未知时为 None
            name_transform: 用编号生成文件名的函数
        """
        super().__init__(session, logger, clock)
        self.top = top
        self.top_msn = top_msn
        self.name_transform = name_transform
        self.current_top = top
        self.ended = False
        # 显式加入的元素遇到 404 时跳过而不是结束
        self.skip_missing = False
        self._queue: Deque[Tuple[int, Optional[int]]] = deque()

    @classmethod
    def with_id_formatter(cls, session, top: int, top_msn: Optional[int],
                          id_formatter: Callable[[int], str]) -> 'TopDownSaver':
        """使用自定义编号格式创建保存器"""
        return cls(session, top, top_msn, lambda name, i: translate_name_default(name, id_formatter(i)))

    def enqueue_element(self, number: int, media_sequence_number: Optional[int] = None):
        """加入一个优先处理的编号（例如标记文件中的缺口）"""
        self._queue.append((number, media_sequence_number))

    def reset(self):
        self.ended = False
        self.current_top = self.top
        self.consecutive_fail_counter = 0
        self.total_fail_counter = 0

    def run(self):
        self.reset()
        timing = self.session.resolved_timing
        while True:
            check_cancelled(self.cancel_event)
            if self.heartbeat_callback is not None:
                self.heartbeat_callback()
            self.logger.info(f"[{self.session.name}] 读取播放列表...")
            try:
                playlist = self.session.fetch_playlist()
            except HttpStatusError as e:
                self.handle_request_failure(e)
                continue
            if not self.tick(playlist):
                return
            wait_or_cancel(timing.top_down_delay, self.cancel_event)

    def tick(self, playlist: Playlist) -> bool:
        """
        处理一个编号

        Returns:
            bool: 是否还有后续工作

        Raises:
            NameTransformError: 模板文件名中没有编号
        """
        if self.ended or self.current_top < 0:
            self.session.write_end_marker()
            return False

        if self._queue:
            number, media_sequence_number = self._queue.popleft()
            result = self._process_element(playlist, number, media_sequence_number, False)
            if result is _ElementResult.RETRY:
                self._queue.appendleft((number, media_sequence_number))
        else:
            media_sequence_number = None
            if self.top_msn is not None:
                media_sequence_number = self.top_msn - self.top + self.current_top
            result = self._process_element(playlist, self.current_top, media_sequence_number, True)
            if result is _ElementResult.DONE:
                self.current_top -= 1

        if result is _ElementResult.ENDED:
            self.session.write_end_marker()
            return False
        if result is _ElementResult.DONE:
            self.consecutive_fail_counter = 0
        return True

    def get_candidate_url(self, playlist: Playlist, number: Union[int, str]) -> str:
        """以第一个条目为模板生成编号对应的 URL，保留原查询字符串"""
        if not playlist.data_lines:
            raise NameTransformError("播放列表中没有片段，无法生成文件名")
        template = playlist.data_lines[0]
        query = urlsplit(self.session.resolve_url(template)).query
        name = template.split('?', 1)[0]
        candidate = urlsplit(self.session.resolve_url(self.name_transform(name, number)))
        return urlunsplit(candidate._replace(query=query))

    def _process_element(self, playlist: Playlist, number: int, media_sequence_number: Optional[int],
                         is_top_down: bool) -> _ElementResult:
        url = self.get_candidate_url(playlist, number)
        self.logger.info(f"[{self.session.name}] 自顶向下下载片段 {self.session.get_file_name(url)}...")
        try:
            # 不使用当前播放列表的加密信息；没有 IV 又没有序列号时解密失败即可
            self.session.download_segment(url, None, media_sequence_number, None)
        except HttpStatusError as e:
            if e.status_code == 404:
                if self.skip_missing and not is_top_down:
                    self.logger.info(f"[{self.session.name}] 片段不存在，跳过")
                    return _ElementResult.DONE
                self.logger.info("服务器返回 404，结束自顶向下下载")
                self.ended = True
                return _ElementResult.ENDED
            self.handle_request_failure(e)
            return _ElementResult.RETRY
        return _ElementResult.DONE
