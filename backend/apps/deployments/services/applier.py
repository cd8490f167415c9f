"""
对账执行器

流程: Start -> Probed -> ActionChosen -> Applying -> Succeeded | Degraded
内容同步按动作的回退链依次尝试，最后一步总是占位页面；
内容就位后总是执行权限修正和服务重启（两者失败都不影响运行结果）
"""
import logging
import os
import tempfile
import uuid
from typing import Optional

from django.utils import timezone

from apps.deployments.conf import DeploymentConfig
from apps.deployments.entities import ActionKind, ApplyResult, ReconcileAction
from apps.deployments.exceptions import (
    CloneFailed,
    CommandTimedOut,
    DeploymentError,
    PermissionApplyFailed,
    PullFailed,
    ResetFailed,
    ServiceRestartFailed,
    SyncError,
)
from .commands import CommandBuilder, DIR_MODE, FILE_MODE
from .guards import Deadline, critical_section
from .placeholder import PLACEHOLDER_FILENAME, generate_placeholder_page
from .probe import StateProbe
from .strategy import SyncStrategy

logger = logging.getLogger(__name__)


class Applier:
    """在目标上执行对账动作"""

    def __init__(self, executor, config: DeploymentConfig, deadline: Optional[Deadline] = None):
        self.executor = executor
        self.config = config
        self.target = config.target
        self.repo = config.repo
        self.deadline = deadline or Deadline(config.timeout)
        self.commands = CommandBuilder(self.target.path, use_sudo=config.use_sudo)
        self._handlers = {
            ActionKind.CLONE_FRESH: self._clone_fresh,
            ActionKind.PULL_REBASE: self._pull_rebase,
            ActionKind.FETCH_RESET_HARD: self._fetch_reset_hard,
            ActionKind.PLACEHOLDER_PAGE: self._placeholder_page,
        }

    def _run(self, command: str):
        return self.executor.run(command, timeout=self.deadline.remaining())

    def reconcile(self, action: Optional[ReconcileAction] = None) -> ApplyResult:
        """
        探测、选择并执行对账动作

        Args:
            action: 强制执行的动作（为None时按探测结果选择）

        Returns:
            ApplyResult
        """
        started_at = timezone.now()
        logger.info(f"[Start] 开始对账: {self.target.host}:{self.target.path} <- {self.repo.url} ({self.repo.branch})")

        self.deadline.check('状态探测')
        state = StateProbe(self.executor).probe(self.target, timeout=self.deadline.remaining())
        logger.info(f"[Probed] {state.value}")

        if action is None:
            action = SyncStrategy.choose(state, self.repo)
        logger.info(
            f"[ActionChosen] {action.kind.value}，回退: "
            f"{', '.join(k.value for k in action.fallbacks) or '无'}"
        )

        result = ApplyResult(state=state, requested=action, started_at=started_at)
        return self.apply(action, result)

    def apply(self, action: ReconcileAction, result: Optional[ApplyResult] = None) -> ApplyResult:
        """按回退链执行动作，然后修正权限并重启服务"""
        if result is None:
            result = ApplyResult(state=None, requested=action, started_at=timezone.now())

        chain = list(action.chain)
        if chain[-1] != ActionKind.PLACEHOLDER_PAGE:
            chain.append(ActionKind.PLACEHOLDER_PAGE)

        logger.info(f"[Applying] {' -> '.join(k.value for k in chain)}")
        for index, kind in enumerate(chain):
            self.deadline.check(kind.value)
            try:
                self._handlers[kind](action, result)
            except SyncError as e:
                next_kind = chain[index + 1]
                result.record_transition(kind, next_kind, str(e))
                logger.warning(f"{kind.value} 失败，回退到 {next_kind.value}: {e}")
                continue
            result.action = kind
            break

        result.degraded = result.action == ActionKind.PLACEHOLDER_PAGE
        result.success = not result.degraded

        self._normalize_permissions(result)
        self.deadline.check('服务重启')
        self._signal_service(result)

        result.finished_at = timezone.now()
        if result.degraded:
            logger.warning(f"[Degraded] 已写入占位页面，回退记录: {result.transitions}")
        else:
            logger.info(f"[Succeeded] {result.action.value}")
        return result

    # 内容同步

    def _clone_fresh(self, action: ReconcileAction, result: ApplyResult):
        if action.clear_first:
            logger.warning(f"目标路径包含非git内容，清空后重新克隆: {self.target.path}")
        cleared = self._run(self.commands.clear())
        if not cleared.ok:
            raise CloneFailed("清空目标路径失败", cleared.output)

        cloned = self._run(self.commands.clone(self.repo.url, self.repo.branch))
        if not cloned.ok:
            raise CloneFailed(f"克隆失败: {self.repo.url}", cloned.output)
        logger.info(f"克隆完成: {self.repo.url} ({self.repo.branch})")

    def _pull_rebase(self, action: ReconcileAction, result: ApplyResult):
        pulled = self._run(self.commands.pull_rebase(self.repo.branch))
        if pulled.ok:
            logger.info(f"pull --rebase 完成: {pulled.stdout.strip()}")
            return
        # 变基冲突时需要先中止，否则后续reset之后仓库仍处于rebase状态
        aborted = self._run(self.commands.rebase_abort())
        logger.info(f"rebase --abort: exit={aborted.exit_status}")
        raise PullFailed("pull --rebase 失败", pulled.output)

    def _fetch_reset_hard(self, action: ReconcileAction, result: ApplyResult):
        fetched = self._run(self.commands.fetch_all())
        if not fetched.ok:
            raise ResetFailed("fetch 失败", fetched.output)
        reset = self._run(self.commands.reset_hard(self.repo.branch))
        if not reset.ok:
            raise ResetFailed(f"reset --hard origin/{self.repo.branch} 失败", reset.output)
        logger.info(f"已重置到远程分支: {reset.stdout.strip()}")

    def _placeholder_page(self, action: ReconcileAction, result: ApplyResult):
        """写入占位页面；失败只记录，不再回退"""
        content = generate_placeholder_page(self.repo.url, self.repo.branch, self.config.log_location)
        with tempfile.NamedTemporaryFile(mode='w', suffix='.html', delete=False, encoding='utf-8') as f:
            f.write(content)
            local_path = f.name
        remote_tmp = f"/tmp/deploy-placeholder-{uuid.uuid4().hex[:8]}.html"
        try:
            self.executor.upload(local_path, remote_tmp)
            installed = self._run(self.commands.install_file(remote_tmp, PLACEHOLDER_FILENAME))
            if installed.ok:
                logger.info(f"已写入占位页面: {self.target.path}/{PLACEHOLDER_FILENAME}")
            else:
                logger.error(f"写入占位页面失败: {installed.output}")
                result.errors.append(f"placeholder_write_failed: {installed.output}")
        except CommandTimedOut:
            raise
        except (OSError, DeploymentError) as e:
            logger.error(f"上传占位页面失败: {e}", exc_info=True)
            result.errors.append(f"placeholder_write_failed: {e}")
        finally:
            os.unlink(local_path)

    # 权限和服务

    def _resolve_owner(self, result: ApplyResult) -> Optional[str]:
        candidates = self.target.owner_candidates
        for name in candidates:
            check = self.executor.run(self.commands.user_exists(name), timeout=self.config.permission_timeout)
            if check.ok:
                if name != candidates[0]:
                    result.transitions.append(f"owner {candidates[0]} -> {name}: user not found")
                    logger.warning(f"用户 {candidates[0]} 不存在，使用 {name}")
                return name
        return None

    def _normalize_permissions(self, result: ApplyResult):
        """属主和权限修正（不可中断；超时不受运行总超时约束）"""
        timeout = self.config.permission_timeout
        with critical_section('权限修正'):
            try:
                owner = self._resolve_owner(result)
                if owner is None:
                    raise PermissionApplyFailed(
                        "没有可用的属主用户", ', '.join(self.target.owner_candidates)
                    )
                chowned = self.executor.run(self.commands.chown(owner), timeout=timeout)
                if not chowned.ok:
                    raise PermissionApplyFailed(f"chown {owner} 失败", chowned.output)
                result.owner_applied = owner
            except (PermissionApplyFailed, CommandTimedOut) as e:
                self._record_permission_error(result, e)

            try:
                for command in (self.commands.chmod_dirs(), self.commands.chmod_files()):
                    changed = self.executor.run(command, timeout=timeout)
                    if not changed.ok:
                        raise PermissionApplyFailed("chmod 失败", changed.output)
                result.mode_applied = f"{DIR_MODE}/{FILE_MODE}"
            except (PermissionApplyFailed, CommandTimedOut) as e:
                self._record_permission_error(result, e)

        if result.owner_applied and result.mode_applied:
            logger.info(f"权限已修正: owner={result.owner_applied}, mode={result.mode_applied}")

    @staticmethod
    def _record_permission_error(result: ApplyResult, error: Exception):
        if not isinstance(error, PermissionApplyFailed):
            error = PermissionApplyFailed("权限修正超时", str(error))
        logger.error(f"权限修正失败: {error}")
        result.record_error(error)

    def _signal_service(self, result: ApplyResult):
        name = self.config.service_name
        if not name:
            logger.info("未配置Web服务，跳过重启")
            return

        enabled = self._run(self.commands.service('enable', name))
        if not enabled.ok:
            logger.warning(f"systemctl enable {name} 失败: {enabled.output}")

        action = self.config.service_action
        restarted = self._run(self.commands.service(action, name))
        if restarted.ok:
            result.service_restarted = True
            logger.info(f"Web服务已{action}: {name}")
            return
        error = ServiceRestartFailed(f"systemctl {action} {name} 失败", restarted.output)
        logger.error(str(error))
        result.record_error(error)
