import platform
import time
from typing import Any, Dict, Optional

import psutil
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from telemetry_server import settings
from telemetry_server.app.events.models import TelemetryEventRecord
from telemetry_server.common.utils import isoformat_utc, utc_now
from telemetry_server.network.cache.cache import health_cache
from telemetry_server.network.database import db

HEALTHY = 'healthy'
UNHEALTHY = 'unhealthy'
HEALTH_CACHE_KEY = 'health'

_started_at = time.monotonic()


def memory_usage() -> Dict[str, Optional[int]]:
    """
    Process memory in bytes. `external` is shared memory, which only some
    platforms report.
    """
    info = psutil.Process().memory_info()
    return {
        'used': info.rss,
        'total': info.vms,
        'external': getattr(info, 'shared', None),
        'rss': info.rss,
    }


class HealthService:
    @staticmethod
    def check() -> Dict[str, Any]:
        """
        Health document, served from the health cache while it is fresh
        """
        cached = health_cache.get(HEALTH_CACHE_KEY)
        if cached is not None:
            return cached

        database_status = 'connected'
        total_events = None
        try:
            db.session.execute(text('SELECT 1'))
            total_events = TelemetryEventRecord.count()
        except SQLAlchemyError as exc:
            logger.opt(exception=exc).error('health check could not reach the database')
            db.session.rollback()
            database_status = 'disconnected'

        from telemetry_server.version import VERSION

        health = {
            'status': HEALTHY if database_status == 'connected' else UNHEALTHY,
            'timestamp': isoformat_utc(utc_now()),
            'uptime': round(time.monotonic() - _started_at, 3),
            'version': VERSION,
            'nodeVersion': f'python {platform.python_version()}',
            'environment': settings.ENVIRONMENT,
            'memory': memory_usage(),
            'database': {'type': settings.DB_TYPE, 'status': database_status},
            'stats': {'totalEvents': total_events},
        }
        health_cache.set(HEALTH_CACHE_KEY, health)
        return health

    @staticmethod
    def is_healthy(health: Dict[str, Any]) -> bool:
        return health['status'] == HEALTHY
