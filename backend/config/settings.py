import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'dev-secret-key-change-in-production')
DEBUG = os.getenv('DEBUG', '0') == '1'
ALLOWED_HOSTS = ['*']

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'corsheaders',
    'labsync',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'config.urls'
WSGI_APPLICATION = 'config.wsgi.application'

# Database
DATABASE_URL = os.getenv('DATABASE_URL', f'sqlite:///{BASE_DIR / "db.sqlite3"}')

if DATABASE_URL.startswith('sqlite'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': DATABASE_URL.replace('sqlite:///', '', 1),
        }
    }
else:
    db_parts = DATABASE_URL.replace('postgresql://', '').split('@')
    user_pass = db_parts[0].split(':')
    host_db = db_parts[1].split('/')
    host_port = host_db[0].split(':')

    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': host_db[1],
            'USER': user_pass[0],
            'PASSWORD': user_pass[1],
            'HOST': host_port[0],
            'PORT': host_port[1] if len(host_port) > 1 else '5432',
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

# CORS
CORS_ALLOW_ALL_ORIGINS = True

# REST Framework
REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'labsync.authentication.BearerTokenAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [],
    'EXCEPTION_HANDLER': 'labsync.exception_handler.unified_exception_handler',
}

# Caller identity: ID tokens are JWTs; uid is the `sub` claim
AUTH_JWT_KEY = os.getenv('AUTH_JWT_KEY', SECRET_KEY)
AUTH_JWT_ALGORITHMS = os.getenv('AUTH_JWT_ALGORITHMS', 'HS256').split(',')
AUTH_JWT_AUDIENCE = os.getenv('AUTH_JWT_AUDIENCE') or None
AUTH_JWT_ISSUER = os.getenv('AUTH_JWT_ISSUER') or None

# Benchling
LAB_CLIENT = os.getenv('LAB_CLIENT', 'benchling')
BENCHLING_API_URL = os.getenv('BENCHLING_API_URL', 'https://esox.benchling.com/api/v2')
BENCHLING_API_KEY = os.getenv('BENCHLING_API_KEY', '')
BENCHLING_SCHEMA_ID = os.getenv('BENCHLING_SCHEMA_ID', 'ts_NJDS3UwU')
BENCHLING_REGISTRY_ID = os.getenv('BENCHLING_REGISTRY_ID', 'src_xro8e9rf')
BENCHLING_ID_PREFIX = os.getenv('BENCHLING_ID_PREFIX', 'EBM')
BENCHLING_ORDERS_FOLDER_ID = os.getenv('BENCHLING_ORDERS_FOLDER_ID', 'lib_XZ3DhMfj')
BENCHLING_ORDER_SCHEMA_ID = os.getenv('BENCHLING_ORDER_SCHEMA_ID', 'ts_kNAYj3h4')
# service name -> (schema id, sample name prefix)
BENCHLING_SERVICE_SCHEMAS = {
    'Metagenomics': (os.getenv('BENCHLING_METAGENOMICS_SCHEMA_ID', 'ts_NJDS3UwU'), 'Meta'),
    'qPCR': (os.getenv('BENCHLING_QPCR_SCHEMA_ID', 'ts_wfTG1Txp'), 'qPCR'),
    'GenomeSequencing': (os.getenv('BENCHLING_GENSEQ_SCHEMA_ID', 'ts_Jy2wFEft'), 'GenSeq'),
}
BENCHLING_REQUEST_TIMEOUT = float(os.getenv('BENCHLING_REQUEST_TIMEOUT', '10'))
# bounded wait for bulk tasks inside a single request
BENCHLING_TASK_POLL_INTERVAL = float(os.getenv('BENCHLING_TASK_POLL_INTERVAL', '2'))
BENCHLING_TASK_TIMEOUT = float(os.getenv('BENCHLING_TASK_TIMEOUT', '20'))
BENCHLING_SYNC_INTERVAL_MINUTES = int(os.getenv('BENCHLING_SYNC_INTERVAL_MINUTES', '10'))
BENCHLING_WEBHOOK_SECRET = os.getenv('BENCHLING_WEBHOOK_SECRET', '')
SYNC_ERROR_HISTORY = int(os.getenv('SYNC_ERROR_HISTORY', '100'))

# Celery
CELERY_BROKER_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = 'UTC'
CELERY_TASK_SOFT_TIME_LIMIT = 600
CELERY_BEAT_SCHEDULE = {
    'process-benchling-sync-queue': {
        'task': 'labsync.tasks.process_sync_queue_task',
        'schedule': BENCHLING_SYNC_INTERVAL_MINUTES * 60,
    },
}

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'labsync': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}
