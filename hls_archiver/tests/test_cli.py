"""
命令行接口测试
"""

import logging
import time

import pytest
import requests

from hls_archiver.cli.cli import HLSArchiverCLI
from hls_archiver.core.errors import HLSArchiverError, OperationCancelled
from hls_archiver.core.naming import translate_name_match_length
from hls_archiver.core.savers import StandardSaver, TailingSaver, TopDownSaver
from hls_archiver.core.session import MARKER_DIRECTORY
from hls_archiver.core.storage import ResourceKey

PLAYLIST = "#EXTM3U\n#EXT-X-MEDIA-SEQUENCE:100\nseg_100.ts\nseg_101.ts\n"


@pytest.fixture
def cli():
    cli = HLSArchiverCLI()
    cli.logger = logging.getLogger("hls_archiver.tests")
    return cli


def _config(cli, *argv):
    return cli.create_config_from_args(cli.parse_arguments(["example.com/live/master.m3u8", *argv]))


def test_default_config(cli):
    """测试默认参数"""
    config = _config(cli)
    assert config.url == "https://example.com/live/master.m3u8"
    assert config.artifact_id == "stream"
    assert config.max_consecutive_retries is None
    assert config.skip_existing_segments


def test_profile_and_overrides(cli):
    """测试配置模板和覆盖参数"""
    config = _config(cli, "--profile", "strict", "--max-total-retries", "9", "--retry-delay", "2",
                     "--request-timeout", "15", "--request-timeout-retries", "0", "--redownload",
                     "--no-decrypt", "-a", "show")
    assert config.max_consecutive_retries == 2
    assert config.max_total_retries == 9
    assert config.timing.http_500_retry_delay == 2
    assert config.timing.http_503_retry_delay == 2
    assert config.request_timeout == 15
    assert config.timing.request_timeout_retries == 1
    assert not config.skip_existing_segments
    assert not config.decrypt
    assert config.artifact_id == "show"


def test_headers_json_and_key_value(cli):
    """测试请求头解析"""
    config = _config(cli, "--headers", '{"Cookie": "a=1"}', "--referer", "https://ref/")
    assert config.headers['Cookie'] == "a=1"
    assert config.referrer == "https://ref/"

    config = _config(cli, "--headers", "X-Token=abc, X-Other = b=c", "--user-agent", "agent")
    assert config.headers['X-Token'] == "abc"
    assert config.headers['X-Other'] == "b=c"
    assert config.headers['User-Agent'] == "agent"


def test_dry_run(cli, capsys):
    assert cli.run(["https://example.com/live/master.m3u8", "--dry-run"]) is True
    assert "https://example.com/live/master.m3u8" in capsys.readouterr().out


def test_invalid_url(cli):
    assert cli.run(["https://", "--dry-run"]) is False


def test_signal_handler_sets_cancel(cli):
    cli._signal_handler(2, None)
    assert cli.cancel_event.is_set()


def test_create_savers(cli, make_session):
    """测试按录制方式创建保存器"""
    session = make_session(PLAYLIST)

    args = cli.parse_arguments(["https://example.com/a.m3u8", "--mode", "standard", "--no-progress"])
    saver = cli._create_saver(session, args, session.config, 0)
    assert isinstance(saver, StandardSaver)
    assert saver.recovery_callback is not None
    assert saver.progress_factory is None

    args = cli.parse_arguments(["https://example.com/a.m3u8", "--top", "50"])
    saver = cli._create_saver(session, args, session.config, 0)
    assert isinstance(saver, TailingSaver)
    assert isinstance(saver.extra_operation, TopDownSaver)
    assert saver.extra_operation.top == 50


def test_top_down_derived_from_playlist(cli, make_session):
    """测试未指定 --top 时从第一个片段推断起始编号"""
    session = make_session(PLAYLIST)
    args = cli.parse_arguments(["https://example.com/a.m3u8", "--mode", "top-down", "--pad-names"])

    saver = cli._create_top_down_saver(session, args, session.config)

    assert saver.top == 99
    assert saver.top_msn == 99
    assert saver.name_transform is translate_name_match_length


def test_top_down_requires_numbered_segment(cli, make_session):
    session = make_session("#EXTM3U\nlive.ts\n")
    args = cli.parse_arguments(["https://example.com/a.m3u8", "--mode", "top-down"])
    with pytest.raises(HLSArchiverError):
        cli._create_top_down_saver(session, args, session.config)


def test_fill_gaps_enqueues_missing(cli, make_session, store):
    """测试根据标记文件补齐缺口"""
    for file, msn in (("seg_1.ts", b"10"), ("seg_4.ts", b"13")):
        with store.create_output_stream(ResourceKey("test", file, MARKER_DIRECTORY)) as stream:
            stream.write(msn)
            stream.commit()
    session = make_session(PLAYLIST)
    args = cli.parse_arguments(["https://example.com/a.m3u8", "--mode", "top-down", "--top", "0",
                                "--fill-gaps"])

    saver = cli._create_top_down_saver(session, args, session.config)

    assert list(saver._queue) == [(2, 11), (3, 12)]
    assert saver.skip_missing


class _FakeSession:

    def __init__(self, name):
        self.name = name


class _FailingSaver:

    def __init__(self, error):
        self.session = _FakeSession("M3U-Primary")
        self.error = error

    def run(self):
        raise self.error


class _WaitingSaver:
    """一直等待到取消信号"""

    def __init__(self, cancel_event):
        self.session = _FakeSession("M3U-Alt-0")
        self.cancel_event = cancel_event
        self.cancelled = False

    def run(self):
        self.cancelled = self.cancel_event.wait(5)
        if self.cancelled:
            raise OperationCancelled("操作已取消")


def test_worker_failure_cancels_other_sessions(cli, monkeypatch):
    """测试同时录制时一个会话的网络错误会取消其他会话，并在结束后抛出"""
    error = requests.ConnectionError("reset")
    waiting = _WaitingSaver(cli.cancel_event)
    savers = [_FailingSaver(error), waiting]
    monkeypatch.setattr(cli, "_create_saver", lambda session, args, config, position: savers[position])

    started = time.monotonic()
    with pytest.raises(requests.ConnectionError) as exc_info:
        cli._run_sessions([object(), object()], None, None)

    assert exc_info.value is error
    assert waiting.cancelled
    assert cli.cancel_event.is_set()
    assert time.monotonic() - started < 4


def test_worker_domain_error_returns_false(cli, monkeypatch):
    waiting = _WaitingSaver(cli.cancel_event)
    savers = [_FailingSaver(HLSArchiverError("bad")), waiting]
    monkeypatch.setattr(cli, "_create_saver", lambda session, args, config, position: savers[position])

    assert cli._run_sessions([object(), object()], None, None) is False
    assert waiting.cancelled
