from typing import Any, Dict

import dramatiq
import sentry_sdk
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from telemetry_server.app.events.service import EventService
from telemetry_server.app.telemetry.domains import TelemetryEvent
from telemetry_server.network.cache.cache import invalidate_event_caches
from telemetry_server.network.database import IsolatedSession

TELEMETRY_QUEUE = 'telemetry'


@dramatiq.actor(max_retries=0, queue_name=TELEMETRY_QUEUE)
def persist_telemetry_event(payload: Dict[str, Any]) -> None:
    """
    Stitches and stores one accepted event. The HTTP response was already
    sent, so failures are only logged.
    """
    try:
        event = TelemetryEvent.from_payload(payload)
    except ValidationError as exc:
        logger.opt(exception=exc).error('queued telemetry payload is malformed')
        return

    try:
        with IsolatedSession(commit_on_success=True):
            stored = EventService.store_event(event)
    except SQLAlchemyError as exc:
        logger.opt(exception=exc).error('failed to persist telemetry event', **event.summary())
        sentry_sdk.capture_exception(exc)
        return

    invalidate_event_caches()
    logger.debug('telemetry event persisted', event_id=stored.id)
