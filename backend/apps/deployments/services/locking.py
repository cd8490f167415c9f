"""
部署锁

在目标主机上用mkdir创建锁目录（原子操作），保证同一目标同时只有一个部署在执行
"""
import logging
import os
import socket
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from apps.deployments.entities import DeployTarget
from apps.deployments.exceptions import DeploymentError, TargetLocked
from .commands import LOCK_BROKEN, LOCK_GONE, LOCK_HELD, CommandBuilder
from .guards import Deadline

logger = logging.getLogger(__name__)

RELEASE_TIMEOUT = 30


class RemoteLock:
    """目标级别的咨询锁"""

    def __init__(
        self,
        executor,
        target: DeployTarget,
        use_sudo: bool = True,
        wait: float = 0,
        poll_interval: float = 2,
        stale_after: Optional[float] = 3600,
        deadline: Optional[Deadline] = None,
        sleep=time.sleep,
    ):
        self.executor = executor
        self.target = target
        self.commands = CommandBuilder(target.path, use_sudo=use_sudo)
        self.wait = wait
        self.poll_interval = poll_interval
        self.stale_after = stale_after
        self.deadline = deadline or Deadline(None)
        self._sleep = sleep
        self.acquired = False

    @property
    def path(self) -> str:
        return self.target.lock_path

    @staticmethod
    def owner_line() -> str:
        now = datetime.now(timezone.utc).isoformat(timespec='seconds')
        return f"{socket.gethostname()}:{os.getpid()}:{now}"

    def _try_acquire(self) -> bool:
        result = self.executor.run(
            self.commands.lock_acquire(self.path, self.owner_line()),
            timeout=self.deadline.remaining(),
        )
        return result.ok

    def _holder(self):
        """
        查询当前持有者

        Returns:
            tuple: (锁存在时间秒数或None, 持有者信息)
        """
        result = self.executor.run(self.commands.lock_info(self.path), timeout=self.deadline.remaining())
        lines = result.stdout.strip().splitlines()
        if not lines or lines[0] == 'MISSING':
            return None, ''
        try:
            age = int(lines[0])
        except ValueError:
            age = None
        return age, ' '.join(lines[1:])

    def _break_stale(self, age, holder) -> bool:
        """
        打破过期锁

        查询和删除之间锁可能已被别的部署打破并重新获取，
        所以先rename再在移走的目录上重新判断是否过期

        Returns:
            bool: 是否可以立即重试获取
        """
        moved = f"{self.path}.stale.{uuid.uuid4().hex[:8]}"
        result = self.executor.run(
            self.commands.lock_break(self.path, moved, self.stale_after),
            timeout=RELEASE_TIMEOUT,
        )
        marker = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ''
        if marker == LOCK_BROKEN:
            logger.warning(f"部署锁已过期（{age}秒，持有者: {holder or '未知'}），已强制释放")
            return True
        if marker == LOCK_GONE:
            return True
        if marker != LOCK_HELD:
            logger.error(f"强制释放部署锁失败: {self.path}, {result.output}")
        logger.info(f"部署锁已被其他部署重新获取: {self.path}")
        return False

    def acquire(self):
        started = time.monotonic()
        while True:
            self.deadline.check('获取部署锁')
            if self._try_acquire():
                self.acquired = True
                logger.info(f"已获取部署锁: {self.target.host}:{self.path}")
                return self

            age, holder = self._holder()
            if age is not None and self.stale_after and age > self.stale_after:
                if self._break_stale(age, holder):
                    continue

            if time.monotonic() - started >= self.wait:
                raise TargetLocked(
                    f"目标正在部署中: {self.target.host}:{self.target.path}",
                    f"持有者: {holder or '未知'}",
                )
            logger.info(f"等待部署锁释放（持有者: {holder or '未知'}）...")
            self._sleep(self.poll_interval)

    def release(self):
        if not self.acquired:
            return
        self.acquired = False
        # 释放不受运行超时限制
        try:
            result = self.executor.run(self.commands.lock_release(self.path), timeout=RELEASE_TIMEOUT)
        except DeploymentError as e:
            logger.error(f"释放部署锁失败: {self.path}, {e}")
            return
        if result.ok:
            logger.info(f"已释放部署锁: {self.path}")
        else:
            logger.error(f"释放部署锁失败: {self.path}, {result.output}")

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()
        return False
