import pytest
from django.core.exceptions import ImproperlyConfigured

from apps.deployments.conf import DeploymentConfig, split_names


@pytest.fixture
def deploy_settings(settings):
    settings.DEPLOY_TRANSPORT = 'ssh'
    settings.DEPLOY_HOST = '203.0.113.10'
    settings.DEPLOY_PORT = '2222'
    settings.DEPLOY_USER = 'ubuntu'
    settings.DEPLOY_KEY_FILE = None
    settings.DEPLOY_PATH = '/var/www/html'
    settings.DEPLOY_OWNER = 'www-data'
    settings.DEPLOY_OWNER_FALLBACKS = 'nginx, apache,,ubuntu'
    settings.DEPLOY_REPO_URL = 'https://github.com/example/website.git'
    settings.DEPLOY_BRANCH = 'main'
    settings.DEPLOY_TIMEOUT = '900'
    settings.DEPLOY_SERVICE_NAME = 'nginx'
    settings.DEPLOY_SERVICE_ACTION = 'reload'
    settings.DEPLOY_USE_SUDO = 'False'
    settings.DEPLOY_LOCK_WAIT = '30'
    settings.DEPLOY_LOCK_POLL_INTERVAL = '0.5'
    return settings


def test_from_settings_parses_values(deploy_settings):
    config = DeploymentConfig.from_settings()

    assert config.host == '203.0.113.10'
    assert config.port == 2222
    assert config.owner_fallbacks == ('nginx', 'apache', 'ubuntu')
    assert config.timeout == 900.0
    assert config.service_action == 'reload'
    assert config.use_sudo is False
    assert config.lock_wait == 30.0
    assert config.lock_poll_interval == 0.5

    target = config.target
    assert target.owner_candidates == ('www-data', 'nginx', 'apache', 'ubuntu')
    assert target.lock_path == '/var/www/html.deploy.lock'
    assert config.repo.url == 'https://github.com/example/website.git'
    assert config.repo.branch == 'main'


def test_overrides_win_and_none_is_ignored(deploy_settings):
    config = DeploymentConfig.from_settings(branch='release', host=None, transport='local')

    assert config.branch == 'release'
    assert config.host == '203.0.113.10'
    assert config.transport == 'local'


def test_owner_candidates_are_deduplicated(deploy_settings):
    deploy_settings.DEPLOY_OWNER_FALLBACKS = 'www-data,nginx,nginx'
    config = DeploymentConfig.from_settings()
    assert config.target.owner_candidates == ('www-data', 'nginx')


def test_repo_url_is_required(deploy_settings):
    deploy_settings.DEPLOY_REPO_URL = ''
    with pytest.raises(ImproperlyConfigured, match='DEPLOY_REPO_URL'):
        DeploymentConfig.from_settings()


def test_ssh_requires_host(deploy_settings):
    deploy_settings.DEPLOY_HOST = ''
    with pytest.raises(ImproperlyConfigured, match='DEPLOY_HOST'):
        DeploymentConfig.from_settings()
    assert DeploymentConfig.from_settings(transport='local').target.host == 'localhost'


@pytest.mark.parametrize('name, value', [
    ('DEPLOY_TRANSPORT', 'telnet'),
    ('DEPLOY_SERVICE_ACTION', 'stop'),
    ('DEPLOY_TIMEOUT', 'soon'),
    ('DEPLOY_TIMEOUT', '0'),
    ('DEPLOY_PORT', '-1'),
    ('DEPLOY_LOCK_POLL_INTERVAL', 'often'),
    ('DEPLOY_PATH', '/'),
])
def test_invalid_values_are_rejected(deploy_settings, name, value):
    setattr(deploy_settings, name, value)
    with pytest.raises(ImproperlyConfigured):
        DeploymentConfig.from_settings()


def test_split_names():
    assert split_names('a, b ,,c') == ('a', 'b', 'c')
    assert split_names(['x', ' ', 'y']) == ('x', 'y')
    assert split_names('') == ()
    assert split_names(None) == ()
