"""
部署配置

从Django settings读取DEPLOY_*配置（settings再从环境变量/.env读取）
"""
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from django.conf import settings as django_settings
from django.core.exceptions import ImproperlyConfigured

from .entities import DeployTarget, RepoSource

TRANSPORTS = ('ssh', 'local')
SERVICE_ACTIONS = ('restart', 'reload')


def split_names(value) -> Tuple[str, ...]:
    """解析逗号分隔的名称列表"""
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(',')
    return tuple(name.strip() for name in value if name and name.strip())


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _as_number(name: str, value, cast=int):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        raise ImproperlyConfigured(f"{name} 必须是数字，当前值: {value!r}")
    if number < 0:
        raise ImproperlyConfigured(f"{name} 不能为负数，当前值: {value!r}")
    return number


@dataclass(frozen=True)
class DeploymentConfig:
    """一次对账运行所需的全部配置"""
    host: str = ''
    path: str = '/var/www/html'
    repo_url: str = ''
    branch: str = 'main'
    port: int = 22
    username: str = 'ubuntu'
    key_file: Optional[str] = None
    transport: str = 'ssh'
    owner: str = 'www-data'
    owner_fallbacks: Tuple[str, ...] = field(default_factory=lambda: ('nginx', 'apache', 'ubuntu'))
    timeout: float = 600
    service_name: str = 'nginx'
    service_action: str = 'restart'
    use_sudo: bool = True
    lock_wait: float = 0
    lock_poll_interval: float = 2
    lock_stale_after: float = 3600
    permission_timeout: float = 120
    log_location: str = 'Jenkins console output'

    @classmethod
    def from_settings(cls, settings=None, **overrides) -> 'DeploymentConfig':
        """
        从Django settings构建配置

        Args:
            settings: settings对象（默认django.conf.settings）
            **overrides: 覆盖项（命令行参数），值为None的项忽略

        Returns:
            DeploymentConfig
        """
        settings = settings or django_settings
        values = dict(
            host=getattr(settings, 'DEPLOY_HOST', '') or '',
            path=getattr(settings, 'DEPLOY_PATH', cls.path),
            repo_url=getattr(settings, 'DEPLOY_REPO_URL', '') or '',
            branch=getattr(settings, 'DEPLOY_BRANCH', cls.branch),
            port=_as_number('DEPLOY_PORT', getattr(settings, 'DEPLOY_PORT', cls.port)),
            username=getattr(settings, 'DEPLOY_USER', cls.username),
            key_file=getattr(settings, 'DEPLOY_KEY_FILE', None) or None,
            transport=getattr(settings, 'DEPLOY_TRANSPORT', cls.transport),
            owner=getattr(settings, 'DEPLOY_OWNER', cls.owner),
            owner_fallbacks=split_names(getattr(settings, 'DEPLOY_OWNER_FALLBACKS', 'nginx,apache,ubuntu')),
            timeout=_as_number('DEPLOY_TIMEOUT', getattr(settings, 'DEPLOY_TIMEOUT', cls.timeout), float),
            service_name=getattr(settings, 'DEPLOY_SERVICE_NAME', cls.service_name) or '',
            service_action=getattr(settings, 'DEPLOY_SERVICE_ACTION', cls.service_action),
            use_sudo=_as_bool(getattr(settings, 'DEPLOY_USE_SUDO', True)),
            lock_wait=_as_number('DEPLOY_LOCK_WAIT', getattr(settings, 'DEPLOY_LOCK_WAIT', cls.lock_wait), float),
            lock_poll_interval=_as_number(
                'DEPLOY_LOCK_POLL_INTERVAL',
                getattr(settings, 'DEPLOY_LOCK_POLL_INTERVAL', cls.lock_poll_interval),
                float,
            ),
            lock_stale_after=_as_number(
                'DEPLOY_LOCK_STALE_SECONDS',
                getattr(settings, 'DEPLOY_LOCK_STALE_SECONDS', cls.lock_stale_after),
                float,
            ),
            permission_timeout=_as_number(
                'DEPLOY_PERMISSION_TIMEOUT',
                getattr(settings, 'DEPLOY_PERMISSION_TIMEOUT', cls.permission_timeout),
                float,
            ),
            log_location=getattr(settings, 'DEPLOY_LOG_LOCATION', cls.log_location),
        )
        values.update({key: value for key, value in overrides.items() if value is not None})
        config = cls(**values)
        config.validate()
        return config

    def with_overrides(self, **overrides) -> 'DeploymentConfig':
        config = replace(self, **{k: v for k, v in overrides.items() if v is not None})
        config.validate()
        return config

    def validate(self):
        if self.transport not in TRANSPORTS:
            raise ImproperlyConfigured(f"DEPLOY_TRANSPORT 只支持 {', '.join(TRANSPORTS)}，当前值: {self.transport!r}")
        if self.transport == 'ssh' and not self.host:
            raise ImproperlyConfigured("SSH方式需要配置 DEPLOY_HOST")
        if not self.repo_url:
            raise ImproperlyConfigured("需要配置 DEPLOY_REPO_URL")
        if not self.branch:
            raise ImproperlyConfigured("DEPLOY_BRANCH 不能为空")
        if not self.path or self.path.rstrip('/') == '':
            raise ImproperlyConfigured(f"DEPLOY_PATH 无效: {self.path!r}")
        if self.service_action not in SERVICE_ACTIONS:
            raise ImproperlyConfigured(
                f"DEPLOY_SERVICE_ACTION 只支持 {', '.join(SERVICE_ACTIONS)}，当前值: {self.service_action!r}"
            )
        if self.timeout <= 0:
            raise ImproperlyConfigured("DEPLOY_TIMEOUT 必须大于0")

    @property
    def target(self) -> DeployTarget:
        return DeployTarget(
            host=self.host or 'localhost',
            path=self.path,
            owner=self.owner,
            owner_fallbacks=tuple(self.owner_fallbacks),
            port=self.port,
            username=self.username,
        )

    @property
    def repo(self) -> RepoSource:
        return RepoSource(url=self.repo_url, branch=self.branch)
