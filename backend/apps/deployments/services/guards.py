"""
运行保护：整体超时和不可中断区
"""
import logging
import signal
import threading
import time
from contextlib import contextmanager
from typing import List, Optional

from apps.deployments.exceptions import DeploymentTimedOut

logger = logging.getLogger(__name__)

DEFERRED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Deadline:
    """一次运行的总超时"""

    def __init__(self, seconds: Optional[float], clock=time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    def remaining(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return max(self.seconds - self.elapsed, 0.0)

    @property
    def expired(self) -> bool:
        return self.seconds is not None and self.elapsed >= self.seconds

    def check(self, stage: str = ''):
        if self.expired:
            raise DeploymentTimedOut(
                f"部署超时（{self.seconds}秒）",
                f"在{stage}阶段" if stage else '',
            )


@contextmanager
def critical_section(name: str = 'critical section'):
    """
    不可中断区：期间收到的SIGINT/SIGTERM延迟到退出后再处理

    只能在主线程注册信号处理，其他线程中直接执行
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    received: List[int] = []
    previous = {}

    def _defer(signum, frame):
        logger.warning(f"{name}进行中，信号 {signum} 延迟处理")
        received.append(signum)

    for signum in DEFERRED_SIGNALS:
        previous[signum] = signal.signal(signum, _defer)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        for signum in received[:1]:
            logger.warning(f"{name}完成，处理延迟的信号 {signum}")
            signal.raise_signal(signum)
