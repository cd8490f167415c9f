"""
同步策略：根据目标状态选择对账动作（纯函数，无IO）
"""
from apps.deployments.entities import ActionKind, ReconcileAction, RepoSource, WorkspaceState

_BY_STATE = {
    WorkspaceState.ABSENT: ReconcileAction(
        ActionKind.CLONE_FRESH,
        fallbacks=(ActionKind.PLACEHOLDER_PAGE,),
    ),
    WorkspaceState.GIT_REPO: ReconcileAction(
        ActionKind.PULL_REBASE,
        fallbacks=(ActionKind.FETCH_RESET_HARD, ActionKind.PLACEHOLDER_PAGE),
    ),
    # 非git内容需要先清空目录再克隆
    WorkspaceState.FOREIGN_CONTENT: ReconcileAction(
        ActionKind.CLONE_FRESH,
        fallbacks=(ActionKind.PLACEHOLDER_PAGE,),
        clear_first=True,
    ),
}

_BY_KIND = {
    ActionKind.CLONE_FRESH: ReconcileAction(
        ActionKind.CLONE_FRESH,
        fallbacks=(ActionKind.PLACEHOLDER_PAGE,),
        clear_first=True,
    ),
    ActionKind.PULL_REBASE: _BY_STATE[WorkspaceState.GIT_REPO],
    ActionKind.FETCH_RESET_HARD: ReconcileAction(
        ActionKind.FETCH_RESET_HARD,
        fallbacks=(ActionKind.PLACEHOLDER_PAGE,),
    ),
    ActionKind.PLACEHOLDER_PAGE: ReconcileAction(ActionKind.PLACEHOLDER_PAGE),
}


class SyncStrategy:
    """状态到动作的映射"""

    @staticmethod
    def choose(state: WorkspaceState, repo: RepoSource = None) -> ReconcileAction:
        """
        选择对账动作

        Args:
            state: 探测到的目标状态
            repo: 代码仓库（动作本身不携带仓库信息，Applier执行时使用）

        Returns:
            ReconcileAction
        """
        try:
            return _BY_STATE[state]
        except KeyError:
            raise ValueError(f"未知的目标状态: {state!r}")

    @staticmethod
    def for_kind(kind: ActionKind) -> ReconcileAction:
        """强制指定动作时使用的独立动作（含回退链）"""
        try:
            return _BY_KIND[kind]
        except KeyError:
            raise ValueError(f"未知的对账动作: {kind!r}")
