from pathlib import Path

import pytest

from apps.deployments.conf import DeploymentConfig
from apps.deployments.exceptions import UnreachableTarget
from apps.deployments.services.executors import CommandResult, RemoteExecutor

WEB_ROOT = '/var/www/html'


class FakeExecutor(RemoteExecutor):
    """
    Scripted executor: the last registered rule whose needle occurs in the
    command decides the result. Unmatched commands succeed with no output.
    """

    def __init__(self, state='ABSENT', users=('www-data',), connect_error=None):
        self.commands = []
        self.timeouts = []
        self.uploads = []
        self.connected = False
        self.closed = False
        self.connect_error = connect_error
        self.rules = []
        self.on('ls -A', stdout=f'{state}\n')
        self.on('id -u ', exit_status=1)
        for user in users:
            self.on(f'id -u {user} ')

    def on(self, needle, exit_status=0, stdout='', stderr='', effect=None):
        if effect is None:
            effect = CommandResult(exit_status, stdout, stderr)
        self.rules.insert(0, (needle, effect))
        return self

    def connect(self):
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    def close(self):
        self.closed = True

    def run(self, command, timeout=None):
        self.commands.append(command)
        self.timeouts.append(timeout)
        for needle, effect in self.rules:
            if needle in command:
                if isinstance(effect, BaseException):
                    raise effect
                if callable(effect):
                    return effect(command)
                return effect
        return CommandResult(0, '', '')

    def upload(self, local_path, remote_path):
        self.uploads.append((remote_path, Path(local_path).read_text(encoding='utf-8')))

    def ran(self, needle):
        return [c for c in self.commands if needle in c]


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def config():
    return DeploymentConfig(
        host='web.example.com',
        path=WEB_ROOT,
        repo_url='https://git.example.com/site.git',
        branch='main',
        owner='www-data',
        owner_fallbacks=('nginx', 'ubuntu'),
        service_name='nginx',
        timeout=300,
    )


@pytest.fixture
def unreachable():
    return FakeExecutor(connect_error=UnreachableTarget('SSH连接失败 web.example.com:22', 'timed out'))
