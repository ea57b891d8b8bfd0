"""
进度显示模块
轮询等待新片段时的进度条
"""

import sys
import threading
from typing import Callable, Optional

from tqdm import tqdm


class ProgressSink:
    """进度输出接口"""

    def report(self, fraction: float):
        """报告进度，fraction 取值 [0, 1]"""

    def mark_complete(self):
        """标记当前操作已正常结束"""

    def close(self):
        """释放进度显示"""


class TqdmProgressSink(ProgressSink):
    """使用 tqdm 显示的进度条"""

    RESOLUTION = 1000

    def __init__(self, description: str, position: Optional[int] = None, leave: bool = False):
        self._lock = threading.Lock()
        self.completed = False
        self._pbar = tqdm(
            total=self.RESOLUTION,
            desc=description,
            position=position,
            leave=leave,
            ncols=70,
            file=sys.stderr,
            mininterval=0.3,
            bar_format='{desc} {bar} {percentage:3.0f}%'
        )

    def report(self, fraction: float):
        fraction = min(max(fraction, 0.0), 1.0)
        with self._lock:
            if self._pbar is None:
                return
            self._pbar.n = int(fraction * self.RESOLUTION)
            self._pbar.refresh()

    def mark_complete(self):
        with self._lock:
            self.completed = True

    def close(self):
        with self._lock:
            if self._pbar is not None:
                self._pbar.close()
                self._pbar = None


def create_progress_factory(concurrent: bool = False, position: int = 0) -> Callable[[str], ProgressSink]:
    """
    创建进度条工厂

    Args:
        concurrent: 是否与其他会话同时显示（使用固定位置）
        position: 同时显示时的行位置

    Returns:
        Callable[[str], ProgressSink]: 以描述文字创建进度条的函数
    """
    def factory(description: str) -> ProgressSink:
        return TqdmProgressSink(description, position=position if concurrent else None)

    return factory
