"""
部署对账的数据模型

所有对象只在一次运行内存在，不做持久化
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class WorkspaceState(Enum):
    """Web根目录当前状态"""
    ABSENT = 'absent'
    GIT_REPO = 'git_repo'
    FOREIGN_CONTENT = 'foreign_content'


class ActionKind(Enum):
    """对账动作"""
    CLONE_FRESH = 'clone_fresh'
    PULL_REBASE = 'pull_rebase'
    FETCH_RESET_HARD = 'fetch_reset_hard'
    PLACEHOLDER_PAGE = 'placeholder_page'


@dataclass(frozen=True)
class DeployTarget:
    """部署目标"""
    host: str
    path: str
    owner: str = 'www-data'
    owner_fallbacks: Tuple[str, ...] = ()
    port: int = 22
    username: str = 'ubuntu'

    @property
    def owner_candidates(self) -> Tuple[str, ...]:
        """属主候选列表（主身份优先，去重保序）"""
        seen = []
        for name in (self.owner,) + tuple(self.owner_fallbacks):
            if name and name not in seen:
                seen.append(name)
        return tuple(seen)

    @property
    def lock_path(self) -> str:
        # 锁目录放在web根目录旁边，清空根目录时不会被删掉
        return f"{self.path.rstrip('/')}.deploy.lock"


@dataclass(frozen=True)
class RepoSource:
    """网站代码仓库"""
    url: str
    branch: str = 'main'


@dataclass(frozen=True)
class ReconcileAction:
    """
    选定的对账动作

    fallbacks 是主动作失败后按顺序尝试的动作
    """
    kind: ActionKind
    fallbacks: Tuple[ActionKind, ...] = ()
    clear_first: bool = False

    @property
    def chain(self) -> Tuple[ActionKind, ...]:
        return (self.kind,) + self.fallbacks


@dataclass
class ApplyResult:
    """一次运行的结果"""
    state: Optional[WorkspaceState]
    requested: ReconcileAction
    action: Optional[ActionKind] = None
    success: bool = False
    degraded: bool = False
    owner_applied: Optional[str] = None
    mode_applied: Optional[str] = None
    service_restarted: bool = False
    transitions: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def status(self) -> str:
        return 'degraded' if self.degraded else 'succeeded'

    def record_transition(self, source: ActionKind, target: ActionKind, reason: str):
        self.transitions.append(f"{source.value} -> {target.value}: {reason}")

    def record_error(self, error: Exception):
        kind = getattr(error, 'kind', type(error).__name__)
        self.errors.append(f"{kind}: {error}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'state': self.state.value if self.state else None,
            'requested': self.requested.kind.value,
            'action': self.action.value if self.action else None,
            'success': self.success,
            'degraded': self.degraded,
            'owner_applied': self.owner_applied,
            'mode_applied': self.mode_applied,
            'service_restarted': self.service_restarted,
            'transitions': list(self.transitions),
            'errors': list(self.errors),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }
