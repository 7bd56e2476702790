import os
import sys
import tempfile

# Test Environment Overrides will override .env files
# THESE MUST BE SET BEFORE ANYTHING FROM telemetry_server IS IMPORTED
TEST_DATA_DIR = tempfile.mkdtemp(prefix='telemetry-tests-')
EXPECTED_DB_PATH = os.path.join(TEST_DATA_DIR, 'telemetry.db')

os.environ['ENVIRONMENT'] = 'testing'
os.environ['DB_TYPE'] = 'sqlite'
os.environ['DB_PATH'] = EXPECTED_DB_PATH
os.environ.pop('DATABASE_URL', None)
os.environ.setdefault('INGEST_BROKER', 'eager')
os.environ.setdefault('DB_BACKFILL_ON_STARTUP', 'False')
os.environ.setdefault('ATOMIC_REQUESTS', 'True')
os.environ.setdefault('LOG_LEVEL', 'WARNING')
os.environ.pop('SENTRY_DSN', None)

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from telemetry_server import setup

setup.run()
setup.create_tables()

# ruff: noqa: E402
import pytest

from telemetry_server import settings
from telemetry_server.network.cache.cache import clear_all_caches

pytest_plugins = [
    'tests.factories.telemetry',
]

# When telemetry_server is imported before the overrides above, tests would
# write to the real database file
if settings.DB_PATH != EXPECTED_DB_PATH:
    raise ValueError(
        'Patching of environment variables failed.\n'
        'This will cause unexpected test failures. '
        'Check all telemetry_server imports are delayed until after patching.\n'
    )


@pytest.fixture(autouse=True)
def reset_caches():
    clear_all_caches()
    yield
    clear_all_caches()
