"""
部署异常定义

fatal=True 的异常会中止本次运行；其余异常由回退链或结果记录处理
"""


class DeploymentError(Exception):
    """部署错误基类"""
    kind = 'deployment_error'
    fatal = True

    def __init__(self, message: str = '', detail: str = ''):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self):
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class UnreachableTarget(DeploymentError):
    """无法连接目标主机（连接或认证失败）"""
    kind = 'unreachable_target'


class DeploymentTimedOut(DeploymentError):
    """运行超时，目标保持当前的部分状态"""
    kind = 'deployment_timed_out'


class TargetLocked(DeploymentError):
    """目标正在被另一个部署占用"""
    kind = 'target_locked'


class CommandTimedOut(DeploymentError):
    """单条远程命令超时（由DeploymentService转换为DeploymentTimedOut）"""
    kind = 'command_timed_out'


class SyncError(DeploymentError):
    """内容同步失败，可通过回退链恢复"""
    kind = 'sync_error'
    fatal = False


class CloneFailed(SyncError):
    kind = 'clone_failed'


class PullFailed(SyncError):
    kind = 'pull_failed'


class ResetFailed(SyncError):
    kind = 'reset_failed'


class PermissionApplyFailed(DeploymentError):
    """属主/权限设置失败，内容仍可访问"""
    kind = 'permission_apply_failed'
    fatal = False


class ServiceRestartFailed(DeploymentError):
    """Web服务重启失败，内容已就位"""
    kind = 'service_restart_failed'
    fatal = False
