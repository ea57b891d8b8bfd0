"""
播放列表处理模块
轮询子播放列表、去重、按顺序处理新片段，并对 HTTP 错误进行分类处理
"""

import logging
import time
from enum import Enum
from typing import BinaryIO, Callable, NamedTuple, Optional, Set

from .errors import (
    AggregateFailure,
    HttpStatusError,
    OperationCancelled,
    PlaylistParseError,
    RecoveryCallbackMissing,
    RetryDelayMissing,
    RetryLimitExceeded,
)
from .models import ItemNo, Playlist, SegmentSettings
from .progress import ProgressSink
from .utils import Stopwatch, check_cancelled, wait_or_cancel


class FailureAction(Enum):
    """HTTP 错误分类后调用方需要执行的动作"""
    NONE = "none"                          # 原地重试
    REFETCH_PLAYLIST = "refetch_playlist"  # 重新获取播放列表


class PassResult(Enum):
    """一轮片段处理的结果"""
    CONTINUE = "continue"
    NEED_REFETCH = "need_refetch"


class PassOutcome(NamedTuple):
    result: PassResult
    processed: int


class PlaylistElementProcessor:
    """播放列表片段处理器接口"""

    def process_playlist_element(self, url: str, playlist: Playlist, media_sequence_number: int,
                                 segment_settings: Optional[SegmentSettings], segment_name: str,
                                 item_no: ItemNo):
        """
        处理一个片段

        Raises:
            HttpStatusError: 请求失败，由调用方分类处理
        """
        raise NotImplementedError


class SegmentDownloadElementProcessor(PlaylistElementProcessor):
    """把片段下载到资源存储"""

    def __init__(self, session):
        self.session = session

    def process_playlist_element(self, url, playlist, media_sequence_number, segment_settings,
                                 segment_name, item_no):
        self.session.logger.info(f"[{self.session.name}] 下载片段 {segment_name} ({item_no.message()})...")
        self.session.download_segment(url, playlist, media_sequence_number, segment_settings)


class SegmentStreamElementProcessor(PlaylistElementProcessor):
    """把片段依次写入外部输出流"""

    def __init__(self, session, target: BinaryIO):
        self.session = session
        self.target = target

    def process_playlist_element(self, url, playlist, media_sequence_number, segment_settings,
                                 segment_name, item_no):
        self.session.logger.info(f"[{self.session.name}] 写出片段 {segment_name} ({item_no.message()})...")
        self.session.stream_segment(self.target, url, playlist, media_sequence_number, segment_settings)


class ExtraSaverOperation:
    """没有新片段时执行的附加操作"""

    def reset(self):
        """开始处理前重置状态"""

    def tick(self, playlist: Playlist) -> bool:
        """
        执行一步

        Returns:
            bool: 是否还有后续工作
        """
        raise NotImplementedError


class PlaylistProcessor:
    """
    播放列表处理器

    负责失败计数与 HTTP 错误分类，以及带空闲超时的轮询主循环。
    """

    WAITING_MESSAGE = "等待新片段"

    def __init__(self, session, logger: Optional[logging.Logger] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        初始化处理器

        Args:
            session: 下载会话
            logger: 日志记录器，默认使用会话的记录器
            clock: 空闲计时使用的时钟
        """
        self.session = session
        self.logger = logger or session.logger
        self.cancel_event = session.cancel_event
        self.clock = clock
        # 以时钟创建空闲计时器
        self.stopwatch_factory: Callable[[Callable[[], float]], Stopwatch] = Stopwatch

        # 每轮开始前调用
        self.heartbeat_callback: Optional[Callable[[], None]] = None
        # 403 及其他非 5xx 错误时调用，通常用于刷新地址（session.set_config）
        self.recovery_callback: Optional[Callable[[HttpStatusError], None]] = None
        # 以描述文字创建等待进度条
        self.progress_factory: Optional[Callable[[str], ProgressSink]] = None

        self.consecutive_fail_counter = 0
        self.total_fail_counter = 0
        self._progress: Optional[ProgressSink] = None

    # ==================== 错误分类 ====================

    def handle_request_failure(self, error: HttpStatusError) -> FailureAction:
        """
        对 HTTP 错误进行分类处理

        Args:
            error: HTTP 错误

        Returns:
            FailureAction: 调用方需要执行的动作

        Raises:
            RecoveryCallbackMissing: 需要恢复回调但未注册
            RetryLimitExceeded: 失败次数超过阈值
            RetryDelayMissing: 没有可用的重试延迟
        """
        self.consecutive_fail_counter += 1
        self.total_fail_counter += 1
        self.logger.info(f"[{self.session.name}] 遇到 HTTP 错误: {error}")

        status = error.status_code
        if status in (500, 503):
            self._check_total_retries(error)
            self._check_consecutive_retries(error)
            timing = self.session.resolved_timing
            delay = timing.http_500_retry_delay if status == 500 else timing.http_503_retry_delay
            self._delay_or_raise(error, delay)
            return FailureAction.NONE

        # 403 与其他状态码：交给恢复回调后重新获取播放列表
        self._get_recovery_callback(error)(error)
        return FailureAction.REFETCH_PLAYLIST

    def _check_total_retries(self, error: HttpStatusError):
        limit = self.session.config.max_total_retries
        if limit is None:
            return
        if self.total_fail_counter > limit:
            raise RetryLimitExceeded(
                f"累计失败 {self.total_fail_counter} 次（上限 {limit}）", error) from error
        self.logger.info(f"累计失败 {self.total_fail_counter}/{limit} 次")

    def _check_consecutive_retries(self, error: HttpStatusError):
        limit = self.session.config.max_consecutive_retries
        if limit is None:
            return
        if self.consecutive_fail_counter > limit:
            raise RetryLimitExceeded(
                f"连续失败 {self.consecutive_fail_counter} 次（上限 {limit}）", error) from error
        self.logger.info(f"连续失败 {self.consecutive_fail_counter}/{limit} 次")

    def _get_recovery_callback(self, error: HttpStatusError) -> Callable[[HttpStatusError], None]:
        if self.recovery_callback is None:
            raise RecoveryCallbackMissing("未注册恢复回调", error) from error
        return self.recovery_callback

    def _delay_or_raise(self, error: HttpStatusError, delay: Optional[float]):
        if delay is None:
            delay = error.retry_after
        if delay is None:
            raise RetryDelayMissing(f"HTTP {error.status_code} 没有可用的重试延迟", error) from error
        wait_or_cancel(delay, self.cancel_event)

    # ==================== 进度 ====================

    def _report_waiting(self, remaining: float, timeout: float):
        if self._progress is None and self.progress_factory is not None:
            self._progress = self.progress_factory(self.WAITING_MESSAGE)
        if self._progress is not None:
            fraction = 1.0 - remaining / timeout if timeout > 0 else 1.0
            self._progress.report(min(max(fraction, 0.0), 1.0))
        elif not self.session.disable_waiting_log:
            self.logger.info(f"[{self.session.name}] 最多等待 {remaining:.3f} 秒新片段...")

    def _close_progress(self, complete: bool = False):
        if self._progress is not None:
            if complete:
                self._progress.mark_complete()
            self._progress.close()
            self._progress = None

    # ==================== 主循环 ====================

    def process_playlist(self, one_off: bool, timeout: float,
                         element_processor: PlaylistElementProcessor,
                         segment_filter: Optional[Callable[[str], SegmentSettings]] = None,
                         extra_operation: Optional[ExtraSaverOperation] = None):
        """
        轮询播放列表并处理新片段，直到空闲超时

        Args:
            one_off: 只处理一轮
            timeout: 空闲超时（秒），超过该时间没有新片段时正常结束
            element_processor: 片段处理器
            segment_filter: 片段过滤器，返回的设置中 skip 为 True 时跳过
            extra_operation: 没有新片段时执行的附加操作

        Raises:
            AggregateFailure: 致命错误
            PlaylistParseError: 播放列表格式错误
            OperationCancelled: 操作已被取消
        """
        if extra_operation is not None:
            extra_operation.reset()
        try:
            self.consecutive_fail_counter = 0
            self.total_fail_counter = 0
            seen: Set[str] = set()
            stopwatch = self.stopwatch_factory(self.clock)
            stopwatch.start()
            remaining = timeout
            timing = self.session.resolved_timing

            while True:
                check_cancelled(self.cancel_event)
                if self.heartbeat_callback is not None:
                    self.heartbeat_callback()
                self._report_waiting(remaining, timeout)

                playlist = self.session.merge_encryption(self._fetch_playlist_with_retry(stopwatch))

                outcome = self._process_entries(playlist, seen, element_processor, segment_filter, stopwatch)
                if outcome.result is PassResult.NEED_REFETCH:
                    # 即使 one_off 也会重新获取
                    self.logger.info("根据错误处理要求重新获取播放列表...")
                    continue

                if outcome.processed:
                    stopwatch.restart()
                    remaining = timeout
                elif not stopwatch.is_running:
                    self._close_progress(complete=True)
                    self.logger.error("计时器未在运行，停止处理")
                    return
                else:
                    if extra_operation is not None:
                        extra_operation = self._tick_extra_operation(extra_operation, playlist)
                    if extra_operation is not None:
                        stopwatch.restart()
                        remaining = timeout
                    else:
                        elapsed = stopwatch.elapsed
                        if elapsed >= timeout:
                            self._close_progress(complete=True)
                            self.logger.info(f"[{self.session.name}] {timeout} 秒内没有新片段，停止")
                            return
                        remaining = timeout - elapsed

                if one_off:
                    break
                wait_or_cancel(timing.playlist_delay, self.cancel_event)
        finally:
            self._close_progress()

    def _fetch_playlist_with_retry(self, stopwatch: Stopwatch) -> Playlist:
        while True:
            try:
                return self.session.fetch_playlist()
            except HttpStatusError as e:
                self._close_progress()
                self.handle_request_failure(e)
                stopwatch.restart()

    def _process_entries(self, playlist: Playlist, seen: Set[str],
                         element_processor: PlaylistElementProcessor,
                         segment_filter: Optional[Callable[[str], SegmentSettings]],
                         stopwatch: Stopwatch) -> PassOutcome:
        """按播放列表顺序处理尚未处理过的片段"""
        processed = 0
        total = len(playlist.data_lines)
        for index, entry in enumerate(playlist.data_lines):
            media_sequence_number = playlist.media_sequence_number(index)
            url = self.session.resolve_url(entry)
            segment_settings = None
            if segment_filter is not None:
                segment_settings = segment_filter(url)
                if segment_settings.skip:
                    continue
            # 以原始条目去重
            if entry in seen:
                continue

            self._close_progress(complete=True)
            while True:
                check_cancelled(self.cancel_event)
                try:
                    element_processor.process_playlist_element(
                        url, playlist, media_sequence_number, segment_settings, entry,
                        ItemNo(index + 1, total))
                    break
                except HttpStatusError as e:
                    self._close_progress()
                    action = self.handle_request_failure(e)
                    stopwatch.restart()
                    if action is FailureAction.REFETCH_PLAYLIST:
                        return PassOutcome(PassResult.NEED_REFETCH, processed)

            self.consecutive_fail_counter = 0
            seen.add(entry)
            processed += 1
        return PassOutcome(PassResult.CONTINUE, processed)

    def _tick_extra_operation(self, extra_operation: ExtraSaverOperation,
                              playlist: Playlist) -> Optional[ExtraSaverOperation]:
        self.logger.info("没有新片段，执行附加操作...")
        try:
            if not extra_operation.tick(playlist):
                return None
        except (OperationCancelled, AggregateFailure, PlaylistParseError):
            raise
        except Exception as e:
            self.logger.exception(f"附加操作失败: {e}")
            return None
        return extra_operation
