import pytest

from apps.deployments.entities import ActionKind, WorkspaceState
from apps.deployments.exceptions import (
    CommandTimedOut,
    DeploymentTimedOut,
    TargetLocked,
    UnreachableTarget,
)
from apps.deployments.services import DeploymentService
from apps.deployments.services.executors import CommandResult

from conftest import FakeExecutor

LOCK = '/var/www/html.deploy.lock'


def test_run_is_wrapped_in_target_lock(config):
    executor = FakeExecutor(state='ABSENT')

    result = DeploymentService.reconcile(config, executor=executor)

    assert result.action == ActionKind.CLONE_FRESH
    assert f'mkdir {LOCK}' in executor.commands[0]
    assert executor.commands[-1] == f'sudo -n rm -rf {LOCK}'
    assert executor.connected and executor.closed


def test_unreachable_target_mutates_nothing(config, unreachable):
    with pytest.raises(UnreachableTarget):
        DeploymentService.reconcile(config, executor=unreachable)

    assert unreachable.commands == []
    assert unreachable.uploads == []


def test_lock_contention_fails_before_applying(config):
    executor = (
        FakeExecutor(state='GIT')
        .on(f'mkdir {LOCK}', exit_status=1)
        .on('stat -c %Y', stdout='12\nci-runner:4242:2026-10-19T08:00:00+00:00\n')
    )

    with pytest.raises(TargetLocked) as excinfo:
        DeploymentService.reconcile(config, executor=executor)

    assert 'ci-runner:4242' in str(excinfo.value)
    assert executor.ran('ls -A') == []
    assert executor.ran(' git ') == []
    assert executor.ran(f'rm -rf {LOCK}') == []
    assert executor.closed


def test_stale_lock_is_broken(config):
    attempts = []

    def acquire(command):
        attempts.append(command)
        status = 1 if len(attempts) == 1 else 0
        return CommandResult(status, '', '')

    executor = (
        FakeExecutor(state='GIT')
        .on(f'mkdir {LOCK}', effect=acquire)
        .on('stat -c %Y', stdout='7200\nold-runner:1:2026-10-19T00:00:00+00:00\n')
        .on(f'{LOCK}.stale.', stdout='LOCK_BROKEN\n')
    )

    result = DeploymentService.reconcile(config, executor=executor)

    assert result.action == ActionKind.PULL_REBASE
    assert len(attempts) == 2
    assert len(executor.ran(f'mv -T {LOCK} {LOCK}.stale.')) == 1
    assert executor.commands[-1] == f'sudo -n rm -rf {LOCK}'


def test_stale_lock_reacquired_by_another_run_is_kept(config):
    executor = (
        FakeExecutor(state='GIT')
        .on(f'mkdir {LOCK}', exit_status=1)
        .on('stat -c %Y', stdout='7200\nold-runner:1:2026-10-19T00:00:00+00:00\n')
        .on(f'{LOCK}.stale.', stdout='LOCK_HELD\n')
    )

    with pytest.raises(TargetLocked):
        DeploymentService.reconcile(config, executor=executor)

    assert executor.ran('ls -A') == []
    assert executor.ran(f'sudo -n rm -rf {LOCK}') == []


def test_command_timeout_becomes_deployment_timeout_and_releases_lock(config):
    executor = FakeExecutor(state='GIT').on('pull --rebase', effect=CommandTimedOut('远程命令超时', 'git pull'))

    with pytest.raises(DeploymentTimedOut) as excinfo:
        DeploymentService.reconcile(config, executor=executor)

    assert excinfo.value.fatal is True
    assert executor.commands[-1] == f'sudo -n rm -rf {LOCK}'
    assert executor.closed


def test_lock_released_when_run_raises(config):
    executor = FakeExecutor(state='GIT').on('pull --rebase', effect=UnreachableTarget('SSH会话中断'))

    with pytest.raises(UnreachableTarget):
        DeploymentService.reconcile(config, executor=executor)

    assert executor.commands[-1] == f'sudo -n rm -rf {LOCK}'


def test_force_action(config):
    executor = FakeExecutor(state='GIT')

    result = DeploymentService.reconcile(config, executor=executor, force_action=ActionKind.FETCH_RESET_HARD)

    assert result.requested.kind == ActionKind.FETCH_RESET_HARD
    assert result.action == ActionKind.FETCH_RESET_HARD
    assert executor.ran('pull --rebase') == []


def test_probe_reports_without_locking(config):
    executor = FakeExecutor(state='FOREIGN')

    state, action = DeploymentService.probe(config, executor=executor)

    assert state == WorkspaceState.FOREIGN_CONTENT
    assert action.kind == ActionKind.CLONE_FRESH
    assert action.clear_first is True
    assert len(executor.commands) == 1
    assert executor.closed
