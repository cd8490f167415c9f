"""
Django settings for the site deployer.
"""

from pathlib import Path
import os
from dotenv import load_dotenv

load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# 只运行管理命令，不对外提供Web服务
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-change-this-in-production')

DEBUG = os.getenv('DEBUG', 'False') == 'True'

ALLOWED_HOSTS = []

# Application definition
INSTALLED_APPS = [
    'apps.deployments',
]

# Internationalization
LANGUAGE_CODE = 'zh-hans'
TIME_ZONE = os.getenv('TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# 部署目标
# 通过SSH连接的主机；DEPLOY_TRANSPORT=local 时在本机执行（Jenkins节点即Web主机）
DEPLOY_TRANSPORT = os.getenv('DEPLOY_TRANSPORT', 'ssh')
DEPLOY_HOST = os.getenv('DEPLOY_HOST', '')
DEPLOY_PORT = os.getenv('DEPLOY_PORT', '22')
DEPLOY_USER = os.getenv('DEPLOY_USER', 'ubuntu')
# 私钥文件路径；为空时使用SSH agent和默认密钥
DEPLOY_KEY_FILE = os.getenv('DEPLOY_KEY_FILE') or None
DEPLOY_PATH = os.getenv('DEPLOY_PATH', '/var/www/html')

# Web服务用户（主用户不存在时按顺序尝试备用用户）
DEPLOY_OWNER = os.getenv('DEPLOY_OWNER', 'www-data')
DEPLOY_OWNER_FALLBACKS = os.getenv('DEPLOY_OWNER_FALLBACKS', 'nginx,apache,ubuntu')

# 网站代码仓库
DEPLOY_REPO_URL = os.getenv('DEPLOY_REPO_URL', '')
DEPLOY_BRANCH = os.getenv('DEPLOY_BRANCH', 'main')

# Web服务（为空时不重启）
DEPLOY_SERVICE_NAME = os.getenv('DEPLOY_SERVICE_NAME', 'nginx')
DEPLOY_SERVICE_ACTION = os.getenv('DEPLOY_SERVICE_ACTION', 'restart')
DEPLOY_USE_SUDO = os.getenv('DEPLOY_USE_SUDO', 'True')

# 超时和部署锁（秒）
DEPLOY_TIMEOUT = os.getenv('DEPLOY_TIMEOUT', '600')
DEPLOY_LOCK_WAIT = os.getenv('DEPLOY_LOCK_WAIT', '0')
DEPLOY_LOCK_POLL_INTERVAL = os.getenv('DEPLOY_LOCK_POLL_INTERVAL', '2')
DEPLOY_LOCK_STALE_SECONDS = os.getenv('DEPLOY_LOCK_STALE_SECONDS', '3600')
DEPLOY_PERMISSION_TIMEOUT = os.getenv('DEPLOY_PERMISSION_TIMEOUT', '120')

# 占位页面中提示的日志位置
DEPLOY_LOG_LOCATION = os.getenv('DEPLOY_LOG_LOCATION', 'Jenkins console output')
# 日志文件（可选，追加写入）
DEPLOY_LOG_FILE = os.getenv('DEPLOY_LOG_FILE', '')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'default': {
            'format': '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'stream': 'ext://sys.stdout',
            'formatter': 'default',
        },
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': os.getenv('DEPLOY_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

if DEPLOY_LOG_FILE:
    LOGGING['handlers']['file'] = {
        'class': 'logging.FileHandler',
        'filename': DEPLOY_LOG_FILE,
        'mode': 'a',
        'encoding': 'utf-8',
        'formatter': 'default',
    }
    LOGGING['loggers']['apps']['handlers'].append('file')
