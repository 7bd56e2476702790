"""
Logical session assignment.

Reconnects of the same user to the same server within the stitch window are
folded into the session that was opened first. Lookups only read committed
events and take no lock: two session starts racing for the same key may both
become their own parent, which readers tolerate.
"""

from typing import Optional

from sqlalchemy import or_

from telemetry_server.app.events.models import TelemetryEventRecord
from telemetry_server.app.telemetry.constants import SESSION_STITCH_WINDOW, EventType
from telemetry_server.app.telemetry.domains import TelemetryEvent
from telemetry_server.network.database import db


class SessionStitcher:
    @staticmethod
    def compute_parent_session_id(event: TelemetryEvent) -> Optional[str]:
        session_id = event.session_id
        if not session_id:
            return None

        if event.event_type == EventType.SESSION_START:
            return SessionStitcher._parent_for_session_start(event, session_id)
        return SessionStitcher._parent_for_session_member(session_id)

    @staticmethod
    def _parent_for_session_start(event: TelemetryEvent, session_id: str) -> str:
        server_id, user_id = event.server_id, event.user_id
        if not server_id or not user_id:
            return session_id

        previous = (
            db.session.query(
                TelemetryEventRecord.timestamp,
                TelemetryEventRecord.parent_session_id,
                TelemetryEventRecord.session_id,
            )
            .filter(
                TelemetryEventRecord.event == EventType.SESSION_START.value,
                TelemetryEventRecord.server_id == server_id,
                TelemetryEventRecord.user_id == user_id,
                TelemetryEventRecord.timestamp <= event.occurred_at,
                TelemetryEventRecord.deleted_at.is_(None),
            )
            .order_by(TelemetryEventRecord.timestamp.desc(), TelemetryEventRecord.id.desc())
            .first()
        )
        if previous is None:
            return session_id

        if event.occurred_at - previous.timestamp <= SESSION_STITCH_WINDOW:
            return previous.parent_session_id or previous.session_id or session_id
        return session_id

    @staticmethod
    def _parent_for_session_member(session_id: str) -> str:
        inherited = (
            db.session.query(TelemetryEventRecord.parent_session_id)
            .filter(
                TelemetryEventRecord.session_id == session_id,
                TelemetryEventRecord.parent_session_id.is_not(None),
            )
            .order_by(TelemetryEventRecord.timestamp.desc(), TelemetryEventRecord.id.desc())
            .first()
        )
        if inherited is not None:
            return inherited.parent_session_id

        start = (
            db.session.query(TelemetryEventRecord.parent_session_id, TelemetryEventRecord.session_id)
            .filter(
                TelemetryEventRecord.session_id == session_id,
                TelemetryEventRecord.event == EventType.SESSION_START.value,
            )
            .order_by(TelemetryEventRecord.timestamp.asc(), TelemetryEventRecord.id.asc())
            .first()
        )
        if start is not None:
            return start.parent_session_id or start.session_id or session_id

        return session_id


def logical_session_clause(session_id: str):
    """
    Rows belonging to a logical session: stitched children plus unstitched rows
    of the physical session with the same id
    """
    return or_(
        TelemetryEventRecord.parent_session_id == session_id,
        (TelemetryEventRecord.parent_session_id.is_(None)) & (TelemetryEventRecord.session_id == session_id),
    )
