import os
from urllib.parse import urlparse

from decouple import Choices, Csv, config

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
BASE_MODULE = 'telemetry_server'
# Default location for the embedded database
DATA_DIR = config('DATA_DIR', default=os.path.join(BASE_DIR, 'data'))

# API Documentation
API_TITLE = config('API_TITLE', default='MCP Telemetry Server')
API_DESCRIPTION = config('API_DESCRIPTION', default='Telemetry collection and analytics for MCP servers')

HOST = config('HOST', default='0.0.0.0')
PORT = config('PORT', default=3100, cast=int)
DEBUG = config('DEBUG', default=False, cast=bool)
# NODE_ENV is honoured so existing deployments keep their environment name
ENVIRONMENT = config(
    'ENVIRONMENT',
    default=config('NODE_ENV', default='local'),
    cast=Choices(['local', 'testing', 'development', 'staging', 'production']),
)
IS_LOCAL = ENVIRONMENT in ('local', 'development')
IS_PRODUCTION = ENVIRONMENT == 'production'
IS_STAGING = ENVIRONMENT == 'staging'
IS_TESTING = ENVIRONMENT == 'testing'  # Set in tests/conftest.py
IS_DEPLOYED_ENV = IS_PRODUCTION or IS_STAGING

BACKEND_CORS_ORIGINS = config('BACKEND_CORS_ORIGINS', default='*', cast=Csv())
CORS_ALLOWED_METHODS = config('CORS_ALLOWED_METHODS', default='GET,POST,PUT,PATCH,DELETE,OPTIONS', cast=Csv())
CORS_ALLOWED_HEADERS = config(
    'CORS_ALLOWED_HEADERS',
    default='Accept,Accept-Language,Content-Type,Content-Language,Authorization,X-Requested-With,X-Request-ID',
    cast=Csv(),
)

API_PREFIX = ''

ATOMIC_REQUESTS = config('ATOMIC_REQUESTS', default=True, cast=bool)
LOG_LEVEL = config('LOG_LEVEL', 'INFO')

# Database
# DATABASE_URL wins over DB_TYPE so hosted Postgres works with a single variable
DATABASE_URL = config('DATABASE_URL', default=None)
if DATABASE_URL and DATABASE_URL.startswith('postgres'):
    DB_TYPE = 'postgresql'
    parsed = urlparse(DATABASE_URL)
    DB_NAME = parsed.path[1:]  # Remove leading /
    DB_USER = parsed.username
    DB_PASSWORD = parsed.password
    DB_HOST = parsed.hostname
    DB_PORT = parsed.port or 5432
else:
    DB_TYPE = config('DB_TYPE', default='sqlite', cast=Choices(['sqlite', 'postgresql']))
    DB_NAME = config('DB_NAME', default='telemetry')
    DB_USER = config('DB_USER', default='telemetry')
    DB_PASSWORD = config('DB_PASSWORD', default='')
    DB_HOST = config('DB_HOST', default='127.0.0.1')
    DB_PORT = config('DB_PORT', default=5432, cast=int)
DB_PATH = config('DB_PATH', default=os.path.join(DATA_DIR, 'telemetry.db'))
DB_MAX_SIZE = config('DB_MAX_SIZE', default=1024 * 1024 * 1024, cast=int)
DB_POOL_SIZE = config('DB_POOL_SIZE', default=10, cast=int)
DB_LOG_STATEMENTS = config('DB_LOG_STATEMENTS', default=False, cast=bool)
DB_CREATE_TABLES = config('DB_CREATE_TABLES', default=True, cast=bool)
DB_BACKFILL_ON_STARTUP = config('DB_BACKFILL_ON_STARTUP', default=True, cast=bool)

# Define boundaries that own models
BOUNDARIES = [
    'app.events',
]
# Boundaries that declare dramatiq actors in `tasks.py`
TASK_BOUNDARIES = [
    'app.telemetry',
]

# Ingestion
# Validator reports every schema error instead of stopping at the first one
REST_DEBUG = config('REST_DEBUG', default=False, cast=bool)
INGEST_BROKER = config('INGEST_BROKER', default='memory', cast=Choices(['memory', 'eager']))
INGEST_WORKER_THREADS = config('INGEST_WORKER_THREADS', default=4, cast=int)
INGEST_QUEUE_MAX_SIZE = config('INGEST_QUEUE_MAX_SIZE', default=10000, cast=int)

# Caches
HEALTH_CHECK_CACHE_TTL_MS = config('HEALTH_CHECK_CACHE_TTL_MS', default=5000, cast=int)
CACHE_CLEANUP_INTERVAL_SECONDS = config('CACHE_CLEANUP_INTERVAL_SECONDS', default=60, cast=int)

# Sentry
SENTRY_DSN = config('SENTRY_DSN', default=None)
SENTRY_DEFAULT_SAMPLE_RATE = config('SENTRY_DEFAULT_SAMPLE_RATE', default=1.0, cast=float)
