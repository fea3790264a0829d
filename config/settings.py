import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
DEBUG = os.getenv('DEBUG', '0') == '1'
ALLOWED_HOSTS = ['*']

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'medrecords',
]

USE_TZ = True
TIME_ZONE = 'UTC'


# Database
# DATABASE_URL 未设置时使用本地 SQLite（开发 / 测试）
def _parse_database_url(url):
    db_parts = url.replace('postgresql://', '').split('@')
    user_pass = db_parts[0].split(':')
    host_db = db_parts[1].split('/')
    host_port = host_db[0].split(':')
    return {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': host_db[1],
        'USER': user_pass[0],
        'PASSWORD': user_pass[1] if len(user_pass) > 1 else '',
        'HOST': host_port[0],
        'PORT': host_port[1] if len(host_port) > 1 else '5432',
    }


DATABASE_URL = os.getenv('DATABASE_URL', '')

if DATABASE_URL.startswith('postgresql://'):
    DATABASES = {'default': _parse_database_url(DATABASE_URL)}
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'medrecords.sqlite3',
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Pharmacy import
# 患者信息只在表头之前的前 N 行里找
PHARMACY_IMPORT_HEADER_LOOKAHEAD = int(os.getenv('PHARMACY_IMPORT_HEADER_LOOKAHEAD', '20'))
PHARMACY_IMPORT_MAX_UPLOAD_BYTES = int(os.getenv('PHARMACY_IMPORT_MAX_UPLOAD_BYTES', str(5 * 1024 * 1024)))

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'medrecords': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
        },
    },
}

# Celery
CELERY_BROKER_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = 'UTC'
# 任务执行超时：10 分钟
CELERY_TASK_SOFT_TIME_LIMIT = 600
