"""
Web根目录状态探测（只读）
"""
import logging
from typing import Optional

from apps.deployments.entities import DeployTarget, WorkspaceState
from apps.deployments.exceptions import UnreachableTarget
from .commands import CommandBuilder, PROBE_ABSENT, PROBE_FOREIGN, PROBE_GIT

logger = logging.getLogger(__name__)

_STATES = {
    PROBE_GIT: WorkspaceState.GIT_REPO,
    PROBE_FOREIGN: WorkspaceState.FOREIGN_CONTENT,
    PROBE_ABSENT: WorkspaceState.ABSENT,
}


class StateProbe:
    """探测目标路径的部署状态，每次运行都重新探测"""

    def __init__(self, executor):
        self.executor = executor

    def probe(self, target: DeployTarget, timeout: Optional[float] = None) -> WorkspaceState:
        """
        探测目标路径

        Args:
            target: 部署目标
            timeout: 命令超时（秒）

        Returns:
            WorkspaceState

        Raises:
            UnreachableTarget: 无法访问目标主机，或远程shell返回了无法识别的结果
        """
        command = CommandBuilder(target.path, use_sudo=False).probe()
        result = self.executor.run(command, timeout=timeout)
        marker = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ''
        state = _STATES.get(marker)
        if not result.ok or state is None:
            raise UnreachableTarget(
                f"无法探测目标路径 {target.host}:{target.path}",
                result.output or f"exit={result.exit_status}",
            )
        logger.info(f"目标状态: {target.host}:{target.path} -> {state.value}")
        return state
