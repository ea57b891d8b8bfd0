"""
测试公共夹具
提供不访问网络的 HTTP 客户端、内存资源存储和可控时钟
"""

import logging

import pytest

from hls_archiver.core.config import ArchiveConfig, SaverTiming
from hls_archiver.core.http import HttpResponse
from hls_archiver.core.parser import M3U8Parser
from hls_archiver.core.session import DownloaderSession
from hls_archiver.core.storage import InMemoryResourceStore

MASTER_URL = "https://cdn.example.com/live/master.m3u8"
MEDIA_URL = "https://cdn.example.com/live/high/index.m3u8"


class FakeHttpClient:
    """
    按 URL 返回预设响应

    每个 URL 对应一个响应队列，依次取出，最后一个重复使用；
    队列中的异常对象会被直接抛出，未注册的 URL 返回 404。
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, *responses):
        """注册响应：(status, body) / (status, body, headers) / 异常"""
        self.routes[url] = list(responses)

    def count(self, url):
        return self.requests.count(url)

    def get(self, url, referrer=None, origin=None, headers=None, stream=False, timeout=None):
        self.requests.append(url)
        queue = self.routes.get(url)
        if not queue:
            return HttpResponse(url, 404, body=b"")
        item = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        status, body = item[0], item[1]
        response_headers = item[2] if len(item) > 2 else {}
        if isinstance(body, str):
            body = body.encode('utf-8')
        return HttpResponse(url, status, response_headers, body=body)

    def close(self):
        pass


class FakeClock:
    """手动推进的时钟"""

    def __init__(self, now=0.0):
        self.now = now

    def advance(self, seconds):
        self.now += seconds

    def __call__(self):
        return self.now


@pytest.fixture
def fake_http():
    return FakeHttpClient()


@pytest.fixture
def store():
    return InMemoryResourceStore()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def config():
    """所有延迟为 0 的配置"""
    return ArchiveConfig(
        url=MASTER_URL,
        artifact_id="test",
        timing=SaverTiming(
            http_500_retry_delay=0,
            http_503_retry_delay=0,
            playlist_delay=0,
            top_down_delay=0,
        ),
        show_progress=False,
    )


@pytest.fixture
def make_session(fake_http, store, config):
    """用给定的子播放列表文本直接创建会话（不经过主播放列表）"""

    def factory(playlist_text="#EXTM3U\n", main_url=MEDIA_URL, session_config=None):
        playlist = M3U8Parser().parse(playlist_text)
        return DownloaderSession(fake_http, store, session_config or config, main_url, playlist,
                                 logger=logging.getLogger("hls_archiver.tests"))

    return factory
