"""
播放列表处理器测试
去重、空闲超时、HTTP 错误分类、附加操作
"""

import logging
import threading

import pytest

from hls_archiver.core.config import SaverTiming
from hls_archiver.core.errors import (
    HttpStatusError,
    NameTransformError,
    OperationCancelled,
    RecoveryCallbackMissing,
    RetryDelayMissing,
    RetryLimitExceeded,
)
from hls_archiver.core.models import SegmentSettings
from hls_archiver.core.processor import (
    ExtraSaverOperation,
    FailureAction,
    PlaylistProcessor,
    SegmentDownloadElementProcessor,
)
from hls_archiver.core.progress import ProgressSink
from hls_archiver.core.storage import ResourceKey
from hls_archiver.core.utils import Stopwatch

MEDIA_URL = "https://cdn.example.com/live/high/index.m3u8"
BASE = "https://cdn.example.com/live/high/"
PLAYLIST = "#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:10\nseg_10.ts\nseg_11.ts\nseg_12.ts\n"


class RecordingProcessor:
    """记录调用的片段处理器"""

    def __init__(self, fail_with=None):
        self.calls = []
        self.fail_with = list(fail_with or [])

    def process_playlist_element(self, url, playlist, media_sequence_number, segment_settings,
                                 segment_name, item_no):
        if self.fail_with:
            raise self.fail_with.pop(0)
        self.calls.append((url, media_sequence_number, segment_name, item_no.message()))


class CountingOperation(ExtraSaverOperation):

    def __init__(self, results):
        self.results = list(results)
        self.ticks = 0
        self.resets = 0

    def reset(self):
        self.resets += 1

    def tick(self, playlist):
        self.ticks += 1
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


class RecordingSink(ProgressSink):

    def __init__(self):
        self.reports = []
        self.completed = False
        self.closed = False

    def report(self, fraction):
        self.reports.append(fraction)

    def mark_complete(self):
        self.completed = True

    def close(self):
        self.closed = True


@pytest.fixture
def processor(make_session, fake_http, fake_clock):
    fake_http.add(MEDIA_URL, (200, PLAYLIST))
    session = make_session(PLAYLIST)
    return PlaylistProcessor(session, clock=fake_clock)


def test_entries_processed_once(processor, fake_http):
    """测试同一播放列表拉取两次时每个片段只处理一次"""
    recorder = RecordingProcessor()

    processor.process_playlist(False, 0, recorder)

    assert fake_http.count(MEDIA_URL) == 2
    assert [call[2] for call in recorder.calls] == ["seg_10.ts", "seg_11.ts", "seg_12.ts"]
    assert recorder.calls[0] == (BASE + "seg_10.ts", 10, "seg_10.ts", "1/3")
    assert recorder.calls[2][1] == 12


def test_idle_timeout_stops_without_error(processor, fake_http, fake_clock):
    """测试没有新片段时在超时后的下一轮结束"""
    fake_http.add(MEDIA_URL, (200, "#EXTM3U\n"))
    processor.heartbeat_callback = lambda: fake_clock.advance(2)

    processor.process_playlist(False, 5, RecordingProcessor())

    # t=2, t=4 继续等待，t=6 超时
    assert fake_http.count(MEDIA_URL) == 3


def test_one_off_single_pass(processor, fake_http):
    recorder = RecordingProcessor()
    processor.process_playlist(True, 60, recorder)
    assert fake_http.count(MEDIA_URL) == 1
    assert len(recorder.calls) == 3


def test_segment_filter_skip(processor):
    """测试片段过滤器"""
    recorder = RecordingProcessor()

    def segment_filter(url):
        return SegmentSettings(skip=url.endswith("seg_11.ts"))

    processor.process_playlist(True, 0, recorder, segment_filter)

    assert [call[2] for call in recorder.calls] == ["seg_10.ts", "seg_12.ts"]


def test_download_element_processor(processor, fake_http, store):
    """测试下载处理器把片段写入存储"""
    for name in ("seg_10.ts", "seg_11.ts", "seg_12.ts"):
        fake_http.add(BASE + name, (200, name.encode()))

    processor.process_playlist(True, 0, SegmentDownloadElementProcessor(processor.session))

    assert store.read(ResourceKey("test", "seg_11.ts")) == b"seg_11.ts"
    assert store.read(ResourceKey("test", "seg_11.ts", "vxf")) == b"11"


def test_forbidden_invokes_recovery_and_refetches(processor, fake_http):
    """测试 403 调用恢复回调并重新获取播放列表（one_off 也会）"""
    recovered = []
    processor.recovery_callback = recovered.append
    recorder = RecordingProcessor(fail_with=[HttpStatusError(403, BASE + "seg_10.ts")])

    processor.process_playlist(True, 0, recorder)

    assert [e.status_code for e in recovered] == [403]
    assert fake_http.count(MEDIA_URL) == 2
    assert [call[2] for call in recorder.calls] == ["seg_10.ts", "seg_11.ts", "seg_12.ts"]


def test_other_status_invokes_recovery(processor):
    recovered = []
    processor.recovery_callback = recovered.append

    action = processor.handle_request_failure(HttpStatusError(404))

    assert action is FailureAction.REFETCH_PLAYLIST
    assert len(recovered) == 1
    assert processor.consecutive_fail_counter == 1
    assert processor.total_fail_counter == 1


def test_missing_recovery_callback(processor):
    """测试需要恢复回调但未注册"""
    error = HttpStatusError(403)
    with pytest.raises(RecoveryCallbackMissing) as exc_info:
        processor.process_playlist(True, 0, RecordingProcessor(fail_with=[error]))
    assert exc_info.value.inner is error
    assert exc_info.value.__cause__ is error


def test_server_error_retries_same_entry(processor, fake_http):
    """测试 500 后原地重试同一片段"""
    recorder = RecordingProcessor(fail_with=[HttpStatusError(500), HttpStatusError(503)])

    processor.process_playlist(True, 0, recorder)

    assert fake_http.count(MEDIA_URL) == 1
    assert [call[2] for call in recorder.calls] == ["seg_10.ts", "seg_11.ts", "seg_12.ts"]
    assert processor.total_fail_counter == 2
    assert processor.consecutive_fail_counter == 0


def test_consecutive_retry_limit(processor, config):
    """测试连续失败超过上限"""
    config.max_consecutive_retries = 1
    recorder = RecordingProcessor(fail_with=[HttpStatusError(500)] * 5)

    with pytest.raises(RetryLimitExceeded):
        processor.process_playlist(True, 0, recorder)
    assert processor.consecutive_fail_counter == 2


def test_total_retry_limit(processor, config):
    """测试累计失败超过上限，成功不会重置累计计数"""
    config.max_total_retries = 1
    processor.process_playlist(True, 0, RecordingProcessor(fail_with=[HttpStatusError(500)]))
    assert processor.total_fail_counter == 1
    assert processor.consecutive_fail_counter == 0

    error = HttpStatusError(503)
    with pytest.raises(RetryLimitExceeded) as exc_info:
        processor.handle_request_failure(error)
    assert exc_info.value.inner is error
    assert processor.total_fail_counter == 2


def test_retry_limit_zero(processor, config):
    config.max_consecutive_retries = 0
    with pytest.raises(RetryLimitExceeded):
        processor.handle_request_failure(HttpStatusError(500))


def test_retry_delay_falls_back_to_retry_after(processor, config):
    """测试没有配置延迟时使用 Retry-After"""
    config.timing = SaverTiming(http_500_retry_delay=None, playlist_delay=0)

    assert processor.handle_request_failure(HttpStatusError(500, retry_after=0)) is FailureAction.NONE
    with pytest.raises(RetryDelayMissing):
        processor.handle_request_failure(HttpStatusError(500))


def test_playlist_fetch_failure_is_retried(processor, fake_http):
    """测试播放列表请求失败后重试拉取"""
    fake_http.add(MEDIA_URL, (503, ""), (200, PLAYLIST))
    recorder = RecordingProcessor()

    processor.process_playlist(True, 0, recorder)

    assert fake_http.count(MEDIA_URL) == 2
    assert len(recorder.calls) == 3
    assert processor.total_fail_counter == 1


def test_extra_operation_runs_when_idle(processor):
    """测试没有新片段时执行附加操作，直到其报告没有后续工作"""
    operation = CountingOperation([True, True, False])

    processor.process_playlist(False, 0, RecordingProcessor(), extra_operation=operation)

    assert operation.resets == 1
    assert operation.ticks == 3


def test_extra_operation_error_is_logged_and_cleared(processor, fake_http):
    """测试附加操作的一般错误只清除该操作"""
    operation = CountingOperation([NameTransformError("no digits")])

    processor.process_playlist(False, 0, RecordingProcessor(), extra_operation=operation)

    assert operation.ticks == 1
    assert fake_http.count(MEDIA_URL) == 2


def test_extra_operation_fatal_error_propagates(processor):
    error = RetryLimitExceeded("limit")
    operation = CountingOperation([error])

    with pytest.raises(RetryLimitExceeded):
        processor.process_playlist(False, 0, RecordingProcessor(), extra_operation=operation)


def test_cancellation(make_session, fake_http, fake_clock):
    """测试取消信号"""
    fake_http.add(MEDIA_URL, (200, PLAYLIST))
    session = make_session(PLAYLIST)
    session.cancel_event = threading.Event()
    processor = PlaylistProcessor(session, clock=fake_clock)
    session.cancel_event.set()

    with pytest.raises(OperationCancelled):
        processor.process_playlist(False, 60, RecordingProcessor())
    assert fake_http.count(MEDIA_URL) == 0


def test_waiting_progress(processor, fake_http, fake_clock):
    """测试等待进度条"""
    fake_http.add(MEDIA_URL, (200, "#EXTM3U\n"))
    sinks = []

    def factory(message):
        sink = RecordingSink()
        sinks.append(sink)
        return sink

    processor.progress_factory = factory
    processor.heartbeat_callback = lambda: fake_clock.advance(2)

    processor.process_playlist(False, 4, RecordingProcessor())

    assert len(sinks) == 1
    assert sinks[0].reports == [0.0, 0.5]
    assert sinks[0].completed
    assert sinks[0].closed


class StoppedStopwatch(Stopwatch):
    """始终不运行的计时器"""

    def start(self):
        pass

    def restart(self):
        pass


def test_stopped_timer_logs_error_and_returns(processor, fake_http, caplog):
    """测试计时器未运行时记录错误并结束，不抛出异常"""
    fake_http.add(MEDIA_URL, (200, "#EXTM3U\n"))
    processor.stopwatch_factory = StoppedStopwatch
    operation = CountingOperation([True])

    with caplog.at_level(logging.ERROR, logger="hls_archiver.tests"):
        processor.process_playlist(False, 60, RecordingProcessor(), extra_operation=operation)

    assert fake_http.count(MEDIA_URL) == 1
    assert operation.ticks == 0
    assert any(record.levelno == logging.ERROR and "计时器未在运行" in record.getMessage()
               for record in caplog.records)
