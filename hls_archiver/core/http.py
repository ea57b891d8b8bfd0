"""
HTTP 模块
对 requests 会话的简单封装，提供带状态码、响应头和响应体的 GET 请求
"""

import logging
import threading
from typing import Dict, Iterator, Mapping, Optional

import requests
from requests.structures import CaseInsensitiveDict

from .config import ArchiveConfig
from .errors import HttpStatusError
from .utils import RetryHandler, check_cancelled, create_session


def _parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    value = headers.get('Retry-After') if headers else None
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        # HTTP 日期格式的 Retry-After 不处理
        return None


class HttpResponse:
    """
    HTTP 响应

    既可以包装 requests.Response（流式读取），也可以直接由字节构造。
    """

    def __init__(self, url: str, status_code: int, headers: Optional[Mapping[str, str]] = None,
                 body: Optional[bytes] = None, raw: Optional[requests.Response] = None):
        self.url = url
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self._body = body
        self._raw = raw

    @classmethod
    def from_requests(cls, response: requests.Response) -> 'HttpResponse':
        return cls(response.url, response.status_code, response.headers, raw=response)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content(self) -> bytes:
        if self._body is None:
            self._body = self._raw.content if self._raw is not None else b""
        return self._body

    @property
    def text(self) -> str:
        if self._raw is not None and self._body is None:
            return self._raw.text
        return self.content.decode('utf-8')

    def iter_content(self, chunk_size: int = 8192) -> Iterator[bytes]:
        """分块读取响应体"""
        if self._raw is not None and self._body is None:
            for chunk in self._raw.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk
            return
        body = self.content
        for offset in range(0, len(body), chunk_size):
            yield body[offset:offset + chunk_size]

    def raise_for_status(self):
        """非 2xx 状态码时抛出 HttpStatusError"""
        if not self.ok:
            raise HttpStatusError(self.status_code, self.url, _parse_retry_after(self.headers))

    def close(self):
        if self._raw is not None:
            self._raw.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class HttpClient:
    """HTTP 客户端，多个会话可以共享同一个实例"""

    def __init__(self, config: Optional[ArchiveConfig] = None,
                 logger: Optional[logging.Logger] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.config = config or ArchiveConfig()
        self.session = create_session(self.config.verify_ssl, self.config.headers)
        self.logger = logger or logging.getLogger(__name__)
        self.cancel_event = cancel_event
        # 连接阶段超时的重试
        self.retry_handler = RetryHandler(
            max_retries=self.config.resolved_timing.request_timeout_retries,
            retry_delay=1.0,
            retry_on=(requests.Timeout,),
            logger=self.logger,
            cancel_event=cancel_event,
        )

    def get(self, url: str, referrer: Optional[str] = None, origin: Optional[str] = None,
            headers: Optional[Dict[str, str]] = None, stream: bool = False,
            timeout=None) -> HttpResponse:
        """
        发送 GET 请求

        Args:
            url: 请求 URL
            referrer: Referer 请求头
            origin: Origin 请求头
            headers: 额外请求头
            stream: 是否流式读取响应体
            timeout: 超时，默认使用配置

        Returns:
            HttpResponse: 响应（不检查状态码）
        """
        request_headers = {}
        if referrer:
            request_headers['Referer'] = referrer
        if origin:
            request_headers['Origin'] = origin
        if headers:
            request_headers.update(headers)

        def _get():
            check_cancelled(self.cancel_event)
            return self.session.get(
                url,
                headers=request_headers,
                timeout=timeout if timeout is not None else self.config.request_timeout,
                stream=stream,
            )

        response = self.retry_handler.execute_with_retry(_get)
        return HttpResponse.from_requests(response)

    def close(self):
        self.session.close()
