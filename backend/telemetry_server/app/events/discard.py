import datetime
from typing import Any, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from telemetry_server.app.events.domains import DiscardedEventCreate
from telemetry_server.app.events.models import DiscardedEvent
from telemetry_server.common.utils import utc_now
from telemetry_server.network.database import IsolatedSession


def _storable(raw_payload: Any) -> Any:
    # The column holds JSON; anything else is wrapped
    if raw_payload is None or isinstance(raw_payload, (dict, list)):
        return raw_payload
    if isinstance(raw_payload, bytes):
        raw_payload = raw_payload.decode('utf-8', errors='replace')
    return {'_raw': str(raw_payload)}


class DiscardLog:
    """
    Write only record of rejected payloads. Nothing on the read side consults it.
    """

    @staticmethod
    def record(raw_payload: Any, reason: str, received_at: Optional[datetime.datetime] = None) -> bool:
        """
        Commits in its own session so a rejected request's rollback keeps the row.
        Failures are logged and swallowed.
        """
        received_at = received_at or utc_now()
        try:
            with IsolatedSession(commit_on_success=True):
                DiscardedEvent.create(
                    DiscardedEventCreate(
                        raw_payload=_storable(raw_payload),
                        reason=reason,
                        received_at=received_at,
                    )
                )
        except SQLAlchemyError as exc:
            logger.opt(exception=exc).error('failed to record discarded event', reason=reason)
            return False

        logger.info('telemetry event discarded', reason=reason)
        return True

    @staticmethod
    def count() -> int:
        return DiscardedEvent.count()
