"""
Django管理命令：对账部署Web根目录
使用方法：
    python manage.py reconcile
    python manage.py reconcile --probe
    python manage.py reconcile --local --path /var/www/html --json

退出码：0 成功或降级（占位页面）；1 配置错误；2 无法连接；3 超时；4 目标被锁定
"""
import json
import logging

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from apps.deployments.conf import DeploymentConfig
from apps.deployments.entities import ActionKind
from apps.deployments.exceptions import (
    DeploymentTimedOut,
    TargetLocked,
    UnreachableTarget,
)
from apps.deployments.services import DeploymentService

logger = logging.getLogger(__name__)

EXIT_CODES = {
    UnreachableTarget: 2,
    DeploymentTimedOut: 3,
    TargetLocked: 4,
}

FORCE_ACTIONS = {
    'clone': ActionKind.CLONE_FRESH,
    'reset': ActionKind.FETCH_RESET_HARD,
    'placeholder': ActionKind.PLACEHOLDER_PAGE,
}


class Command(BaseCommand):
    help = '对账部署Web根目录（克隆/拉取/重置，失败时写入占位页面）'

    def add_arguments(self, parser):
        parser.add_argument('--host', help='目标主机')
        parser.add_argument('--path', help='Web根目录')
        parser.add_argument('--repo', help='代码仓库URL')
        parser.add_argument('--branch', help='分支')
        parser.add_argument('--timeout', type=float, help='运行总超时（秒）')
        parser.add_argument('--local', action='store_true', help='在本机执行，不使用SSH')
        parser.add_argument('--probe', action='store_true', help='只探测状态，不做修改')
        parser.add_argument('--force-action', choices=sorted(FORCE_ACTIONS), help='强制执行指定动作')
        parser.add_argument('--json', action='store_true', help='以JSON输出结果')

    def handle(self, *args, **options):
        if options['verbosity'] >= 2:
            logging.getLogger('apps').setLevel(logging.DEBUG)

        try:
            config = DeploymentConfig.from_settings(
                host=options['host'],
                path=options['path'],
                repo_url=options['repo'],
                branch=options['branch'],
                timeout=options['timeout'],
                transport='local' if options['local'] else None,
            )
        except ImproperlyConfigured as e:
            raise CommandError(f'配置错误: {e}', returncode=1)

        try:
            if options['probe']:
                state, action = DeploymentService.probe(config)
                self._report_probe(state, action, options['json'])
                return
            force_action = FORCE_ACTIONS.get(options['force_action']) if options['force_action'] else None
            result = DeploymentService.reconcile(config, force_action=force_action)
        except (UnreachableTarget, DeploymentTimedOut, TargetLocked) as e:
            logger.error(f'部署失败: {e}')
            raise CommandError(f'{e.kind}: {e}', returncode=EXIT_CODES[type(e)])

        if options['json']:
            self.stdout.write(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
            return

        if result.degraded:
            self.stdout.write(self.style.WARNING(f'部署降级: 已写入占位页面 ({config.path})'))
        else:
            self.stdout.write(self.style.SUCCESS(f'部署成功: {result.action.value} ({config.path})'))
        for transition in result.transitions:
            self.stdout.write(f'  回退: {transition}')
        for error in result.errors:
            self.stdout.write(self.style.ERROR(f'  错误: {error}'))

    def _report_probe(self, state, action, as_json: bool):
        if as_json:
            self.stdout.write(json.dumps({
                'state': state.value,
                'action': action.kind.value,
                'fallbacks': [k.value for k in action.fallbacks],
                'clear_first': action.clear_first,
            }, ensure_ascii=False, indent=2))
            return
        self.stdout.write(f'状态: {state.value}')
        self.stdout.write(f'动作: {action.kind.value}（回退: {", ".join(k.value for k in action.fallbacks) or "无"}）')
