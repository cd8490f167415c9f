"""
部署服务层

Web根目录对账：StateProbe 探测状态 -> SyncStrategy 选择动作 -> Applier 执行
"""

from .applier import Applier
from .deployment_service import DeploymentService
from .executors import CommandResult, LocalExecutor, RemoteExecutor, SSHExecutor
from .probe import StateProbe
from .strategy import SyncStrategy

__all__ = [
    'Applier',
    'CommandResult',
    'DeploymentService',
    'LocalExecutor',
    'RemoteExecutor',
    'SSHExecutor',
    'StateProbe',
    'SyncStrategy',
]
