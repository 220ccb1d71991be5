"""
Django settings for chsync project.

All connection and export defaults are read from environment variables so
the same settings module serves management commands and Celery workers.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'chsync-insecure-dev-key')
DEBUG = os.environ.get('DJANGO_DEBUG', 'false').lower() == 'true'
ALLOWED_HOSTS = []

INSTALLED_APPS = [
    'exporter',
]

# No ORM models; export state lives in ClickHouse and Kafka
DATABASES = {}

USE_TZ = True
TIME_ZONE = 'UTC'


def _env_bool(name, default=False):
    return os.environ.get(name, str(default)).lower() in ('1', 'true', 'yes')


# ====================================
# CLICKHOUSE
# ====================================
CLICKHOUSE_CONFIG = {
    'HOST': os.environ.get('CLICKHOUSE_HOST', '127.0.0.1'),
    'PORT': int(os.environ.get('CLICKHOUSE_PORT', 9000)),
    'USER': os.environ.get('CLICKHOUSE_USER', 'default'),
    'PASSWORD': os.environ.get('CLICKHOUSE_PASSWORD', ''),
    'DATABASE': os.environ.get('CLICKHOUSE_DATABASE', 'default'),
    'SECURE': _env_bool('CLICKHOUSE_SECURE'),
    'POOL_SIZE': int(os.environ.get('CLICKHOUSE_POOL_SIZE', 5)),
}

# ====================================
# KAFKA
# ====================================
KAFKA_CONFIG = {
    'BOOTSTRAP_SERVERS': os.environ.get('KAFKA_BOOTSTRAP_SERVERS', '127.0.0.1:9092'),
    'CLIENT_ID': os.environ.get('KAFKA_CLIENT_ID', 'chsync-exporter'),
    'REQUEST_TIMEOUT': float(os.environ.get('KAFKA_REQUEST_TIMEOUT', 5)),
    'MESSAGE_TIMEOUT_MS': int(os.environ.get('KAFKA_MESSAGE_TIMEOUT_MS', 30000)),
    'LINGER_MS': int(os.environ.get('KAFKA_LINGER_MS', 50)),
    'FLUSH_TIMEOUT': float(os.environ.get('KAFKA_FLUSH_TIMEOUT', 60)),
}

KAFKA_TOPIC_CONFIG = {
    'PARTITIONS': int(os.environ.get('KAFKA_TOPIC_PARTITIONS', 1)),
    'REPLICATION_FACTOR': int(os.environ.get('KAFKA_REPLICATION_FACTOR', 1)),
    'ROWS_PER_PARTITION': int(os.environ.get('KAFKA_ROWS_PER_PARTITION', 1000000)),
}

# ====================================
# EXPORT DEFAULTS
# ====================================
EXPORT_CONFIG = {
    'BATCH_SIZE': int(os.environ.get('EXPORT_BATCH_SIZE', 10000)),
    'ORDER_BY': os.environ.get('EXPORT_ORDER_BY', ''),
    'KEY_COLUMN': os.environ.get('EXPORT_KEY_COLUMN', ''),
    'CURSOR_COLUMN': os.environ.get('EXPORT_CURSOR_COLUMN', ''),
    'CURSOR_START': os.environ.get('EXPORT_CURSOR_START', ''),
    'CURSOR_END': os.environ.get('EXPORT_CURSOR_END', ''),
    'WATCH': _env_bool('EXPORT_WATCH'),
    'POLL_INTERVAL': float(os.environ.get('EXPORT_POLL_INTERVAL', 5)),
    'MAX_RETRIES': int(os.environ.get('EXPORT_MAX_RETRIES', 3)),
    'READY_TIMEOUT': float(os.environ.get('EXPORT_READY_TIMEOUT', 10)),
    'THROTTLE_SECONDS': float(os.environ.get('EXPORT_THROTTLE_SECONDS', 0.01)),
    'TARGET_DATABASE': os.environ.get('EXPORT_TARGET_DATABASE', ''),
    'TARGET_TABLE': os.environ.get('EXPORT_TARGET_TABLE', ''),
    'MV_OWN_TABLE': _env_bool('EXPORT_MV_OWN_TABLE', True),
    'CURSOR_START_FROM_TARGET': _env_bool('EXPORT_CURSOR_START_FROM_TARGET'),
}

# Per-table overrides, e.g.
# {'name': 'events', 'cursor_column': 'id', 'export_key_column': 'user_id', 'batch_size': 5000}
EXPORT_TABLES = []

# ====================================
# CELERY
# ====================================
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_ACKS_LATE = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1

# ====================================
# LOGGING
# ====================================
LOG_LEVEL = os.environ.get('CHSYNC_LOG_LEVEL', 'INFO').upper()
LOG_FILE = os.environ.get('CHSYNC_LOG_FILE', '')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'exporter': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'chsync': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
        },
    },
}

if LOG_FILE:
    LOGGING['handlers']['file'] = {
        'class': 'logging.FileHandler',
        'filename': LOG_FILE,
        'formatter': 'verbose',
    }
    for _name in ('exporter', 'chsync'):
        LOGGING['loggers'][_name]['handlers'].append('file')
