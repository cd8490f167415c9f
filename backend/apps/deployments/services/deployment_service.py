"""
部署服务

一次对账运行的入口：连接目标 -> 获取部署锁 -> 对账 -> 释放锁 -> 断开连接
"""
import logging
from typing import Optional

from apps.deployments.conf import DeploymentConfig
from apps.deployments.entities import ActionKind, ApplyResult, ReconcileAction, WorkspaceState
from apps.deployments.exceptions import CommandTimedOut, DeploymentTimedOut
from .applier import Applier
from .executors import RemoteExecutor, get_executor
from .guards import Deadline
from .locking import RemoteLock
from .probe import StateProbe
from .strategy import SyncStrategy

logger = logging.getLogger(__name__)


class DeploymentService:
    """部署业务服务"""

    @staticmethod
    def reconcile(
        config: DeploymentConfig,
        executor: Optional[RemoteExecutor] = None,
        force_action: Optional[ActionKind] = None,
    ) -> ApplyResult:
        """
        执行一次对账

        Args:
            config: 部署配置
            executor: 执行器（默认按配置创建）
            force_action: 强制执行的动作

        Returns:
            ApplyResult: 成功或降级（占位页面）都会返回结果

        Raises:
            UnreachableTarget: 无法连接目标，未做任何修改
            TargetLocked: 目标正在被其他部署占用
            DeploymentTimedOut: 超过运行总超时，目标保持当前状态
        """
        executor = executor or get_executor(config)
        deadline = Deadline(config.timeout)
        action = SyncStrategy.for_kind(force_action) if force_action else None

        executor.connect()
        try:
            lock = RemoteLock(
                executor,
                config.target,
                use_sudo=config.use_sudo,
                wait=config.lock_wait,
                poll_interval=config.lock_poll_interval,
                stale_after=config.lock_stale_after,
                deadline=deadline,
            )
            with lock:
                result = Applier(executor, config, deadline=deadline).reconcile(action)
        except CommandTimedOut as e:
            raise DeploymentTimedOut(f"部署超时（{config.timeout}秒），目标保持当前状态", e.detail)
        finally:
            executor.close()

        logger.info(
            f"对账完成: status={result.status}, action={result.action.value}, "
            f"owner={result.owner_applied}, mode={result.mode_applied}, "
            f"service_restarted={result.service_restarted}"
        )
        return result

    @staticmethod
    def probe(config: DeploymentConfig, executor: Optional[RemoteExecutor] = None):
        """
        只读探测：返回目标状态和将要执行的动作，不加锁、不修改

        Returns:
            Tuple[WorkspaceState, ReconcileAction]
        """
        executor = executor or get_executor(config)
        executor.connect()
        try:
            state: WorkspaceState = StateProbe(executor).probe(config.target, timeout=config.timeout)
        except CommandTimedOut as e:
            raise DeploymentTimedOut(f"探测超时（{config.timeout}秒）", e.detail)
        finally:
            executor.close()
        action: ReconcileAction = SyncStrategy.choose(state, config.repo)
        return state, action
