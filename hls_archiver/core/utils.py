"""
工具模块
包含日志、HTTP 会话、重试、计时与取消等通用工具
"""

import logging
import threading
import time
import warnings
from typing import Callable, Dict, Optional, Tuple, Type
from urllib.parse import urlparse, urlsplit, unquote

import requests
from urllib3.exceptions import InsecureRequestWarning

from .errors import OperationCancelled


def setup_logger(name: str, log_file: Optional[str] = None, console_output: bool = True) -> logging.Logger:
    """
    配置并返回日志记录器

    Args:
        name: 日志记录器名称
        log_file: 日志文件路径，None 表示不写文件
        console_output: 是否输出到控制台

    Returns:
        logging.Logger: 配置好的日志记录器
    """
    logger = logging.getLogger(name)

    # 避免重复添加 handler
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def create_session(verify_ssl: bool = False, headers: Optional[Dict[str, str]] = None) -> requests.Session:
    """
    创建配置好的 HTTP 会话

    Args:
        verify_ssl: 是否验证 SSL 证书
        headers: 自定义请求头

    Returns:
        requests.Session: 配置好的会话对象
    """
    session = requests.Session()
    session.verify = verify_ssl

    if not verify_ssl:
        warnings.filterwarnings('ignore', category=InsecureRequestWarning)

    if headers:
        session.headers.update(headers)

    return session


def extract_filename_from_url(url: str) -> str:
    """
    从 URL 提取文件名,移除查询参数和片段标识

    Args:
        url: URL 字符串

    Returns:
        str: 文件名
    """
    path = urlsplit(url).path
    return unquote(path.rstrip('/').split('/')[-1])


def format_time(seconds: float) -> str:
    """格式化时间"""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{seconds/60:.1f}m"
    else:
        return f"{seconds/3600:.1f}h"


def check_cancelled(cancel_event: Optional[threading.Event]):
    """取消信号已设置时抛出 OperationCancelled"""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled("操作已取消")


def wait_or_cancel(seconds: float, cancel_event: Optional[threading.Event] = None):
    """
    等待指定时间，期间收到取消信号立即抛出 OperationCancelled

    Args:
        seconds: 等待秒数
        cancel_event: 取消信号
    """
    if seconds <= 0:
        check_cancelled(cancel_event)
        return
    if cancel_event is None:
        time.sleep(seconds)
        return
    if cancel_event.wait(seconds):
        raise OperationCancelled("操作已取消")


class RetryHandler:
    """
    重试处理器 - 支持指数退避策略
    """

    def __init__(self, max_retries: int = 3, retry_delay: float = 1.0,
                 retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                 logger: Optional[logging.Logger] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        初始化重试处理器

        Args:
            max_retries: 最大重试次数（不含第一次执行）
            retry_delay: 重试延迟(秒)
            retry_on: 需要重试的异常类型
            logger: 日志记录器
            cancel_event: 取消信号
        """
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_on = retry_on
        self.logger = logger or logging.getLogger(__name__)
        self.cancel_event = cancel_event

    def execute_with_retry(self, func: Callable, *args, **kwargs):
        """
        执行函数,失败时重试

        Args:
            func: 要执行的函数
            *args: 位置参数
            **kwargs: 关键字参数

        Returns:
            函数执行结果

        Raises:
            Exception: 重试失败后抛出最后一次的异常
        """
        attempt = 0
        while True:
            check_cancelled(self.cancel_event)
            try:
                return func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                self.logger.warning(f"请求失败 ({e})，重试 {attempt}/{self.max_retries}")
                # 指数退避
                wait_or_cancel(self.retry_delay * (2 ** (attempt - 1)), self.cancel_event)


class Stopwatch:
    """简单计时器，时钟可替换以便测试"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started_at: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def start(self):
        if self._started_at is None:
            self._started_at = self._clock()

    def restart(self):
        self._started_at = self._clock()

    def stop(self):
        self._started_at = None


class URLProcessor:
    """URL 处理工具"""

    @staticmethod
    def validate_url(url: str) -> bool:
        """验证URL格式"""
        try:
            result = urlparse(url)
        except ValueError:
            return False
        return all([result.scheme, result.netloc])

    @staticmethod
    def normalize_url(url: str) -> str:
        """标准化URL"""
        url = url.strip()
        if not url.startswith(('http://', 'https://')):
            url = 'https://' + url
        return url


def print_banner():
    """打印欢迎横幅"""
    banner = """
        ╔══════════════════════════════════════════════════════════════╗
        ║                       HLS Archiver                           ║
        ║                                                              ║
        ║  HLS 直播归档工具                                            ║
        ║  支持跟随录制、自顶向下回填、AES 解密、错误重试              ║
        ╚══════════════════════════════════════════════════════════════╝
    """
    print(banner)
