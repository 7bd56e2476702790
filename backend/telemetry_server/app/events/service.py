import datetime
import json
import re
from typing import Any, Optional

from loguru import logger
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from telemetry_server.app.events.domains import (
    BackfillResult,
    EventCreate,
    EventRead,
    SettingCreate,
    TrashPage,
)
from telemetry_server.app.events.models import Org, Setting, TelemetryEventRecord
from telemetry_server.app.events.stitcher import SessionStitcher, logical_session_clause
from telemetry_server.app.telemetry.domains import TelemetryEvent
from telemetry_server.app.telemetry.extractors import derive_fields
from telemetry_server.common.utils import get_day_bounds_utc, utc_now
from telemetry_server.network.cache.cache import invalidate_event_caches
from telemetry_server.network.database import db, on_commit

# Rows without any session for a user on one UTC day are listed under this id
PSEUDO_SESSION_PATTERN = re.compile(r'^user_(?P<user_id>.+)_(?P<date>\d{4}-\d{2}-\d{2})$')

TRASH_DEFAULT_LIMIT = 50
TRASH_MAX_LIMIT = 100
BACKFILL_BATCH_SIZE = 500
DERIVED_COLUMNS = ('org_id', 'user_name', 'tool_name', 'company_name', 'error_message')


def pseudo_session_id(user_id: str, day: datetime.date) -> str:
    return f'user_{user_id}_{day.isoformat()}'


class EventService:
    @staticmethod
    def store_event(event: TelemetryEvent) -> EventRead:
        """
        Stitches and inserts one event, then upserts the org it belongs to
        """
        parent_session_id = SessionStitcher.compute_parent_session_id(event)
        stored = TelemetryEventRecord.create(
            EventCreate(
                event=event.event_type,
                area=event.area,
                event_name=event.event,
                success=event.success,
                telemetry_schema_version=event.telemetry_schema_version,
                timestamp=event.occurred_at,
                server_id=event.server_id,
                version=event.server_version,
                session_id=event.session_id,
                parent_session_id=parent_session_id,
                user_id=event.user_id,
                data=event.data,
                received_at=event.received_at,
                org_id=event.org_id,
                user_name=event.user_name,
                tool_name=event.tool_name,
                company_name=event.company_name,
                error_message=event.error_message,
            )
        )

        if event.server_id and event.company_name:
            EventService.upsert_org(event.server_id, event.company_name)

        logger.debug(
            'telemetry event stored',
            event_id=stored.id,
            parent_session_id=parent_session_id,
            **event.summary(),
        )
        return stored

    @staticmethod
    def upsert_org(server_id: str, company_name: str) -> bool:
        """
        Best effort, a failure never undoes the event insert
        """
        try:
            with db.session.begin_nested():
                Org.upsert(
                    values={'server_id': server_id, 'company_name': company_name, 'updated_at': utc_now()},
                    conflict_keys=['server_id'],
                    update_keys=['company_name', 'updated_at'],
                )
        except SQLAlchemyError as exc:
            logger.opt(exception=exc).warning('org upsert failed', server_id=server_id)
            return False
        return True

    @staticmethod
    def get_event(event_id: int) -> Optional[EventRead]:
        return TelemetryEventRecord.get_or_none(id=event_id)

    @staticmethod
    def soft_delete_event(event_id: int) -> bool:
        updated = TelemetryEventRecord.bulk_update(
            updates={'deleted_at': utc_now()},
            clauses=[TelemetryEventRecord.id == event_id],
        )
        EventService._invalidate_on_change(updated)
        return updated > 0

    @staticmethod
    def soft_delete_events(session_id: Optional[str] = None) -> int:
        """
        Moves a logical session to the trash, or every event when no session is given
        """
        if not session_id:
            clauses = [TelemetryEventRecord.id.is_not(None)]
        elif match := PSEUDO_SESSION_PATTERN.match(session_id):
            day = datetime.date.fromisoformat(match.group('date'))
            start, end = get_day_bounds_utc(day)
            clauses = [
                TelemetryEventRecord.user_id == match.group('user_id'),
                TelemetryEventRecord.timestamp >= start,
                TelemetryEventRecord.timestamp < end,
                TelemetryEventRecord.session_id.is_(None),
                TelemetryEventRecord.parent_session_id.is_(None),
            ]
        else:
            clauses = [logical_session_clause(session_id)]

        updated = TelemetryEventRecord.bulk_update(updates={'deleted_at': utc_now()}, clauses=clauses)
        logger.info('events moved to trash', session_id=session_id, count=updated)
        EventService._invalidate_on_change(updated)
        return updated

    @staticmethod
    def list_deleted(limit: int = TRASH_DEFAULT_LIMIT, offset: int = 0) -> TrashPage:
        limit = max(1, min(limit, TRASH_MAX_LIMIT))
        offset = max(0, offset)
        trash = TelemetryEventRecord.only_deleted()
        total = trash.get_query().count()
        rows = (
            trash.get_query()
            .order_by(TelemetryEventRecord.deleted_at.desc(), TelemetryEventRecord.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        events = [EventRead.model_validate(row).to_json_dict() for row in rows]
        return TrashPage(events=events, total=total, limit=limit, offset=offset, has_more=offset + len(events) < total)

    @staticmethod
    def recover_event(event_id: int) -> bool:
        updated = TelemetryEventRecord.bulk_update(
            updates={'deleted_at': None},
            clauses=[TelemetryEventRecord.id == event_id],
            manager=TelemetryEventRecord.only_deleted(),
        )
        EventService._invalidate_on_change(updated)
        return updated > 0

    @staticmethod
    def permanently_delete_event(event_id: int) -> bool:
        deleted = TelemetryEventRecord.delete(
            TelemetryEventRecord.id == event_id,
            manager=TelemetryEventRecord.only_deleted(),
        )
        return deleted > 0

    @staticmethod
    def empty_trash() -> int:
        deleted = TelemetryEventRecord.delete_all(manager=TelemetryEventRecord.only_deleted())
        logger.info('trash emptied', count=deleted)
        return deleted

    @staticmethod
    def cleanup_trash(days: int = 30, as_of: Optional[datetime.datetime] = None) -> int:
        """
        Permanently removes events that have been in the trash for more than `days`
        """
        cutoff = (as_of or utc_now()) - datetime.timedelta(days=days)
        deleted = TelemetryEventRecord.delete(
            TelemetryEventRecord.deleted_at < cutoff,
            manager=TelemetryEventRecord.only_deleted(),
        )
        logger.info('trash cleaned up', days=days, count=deleted)
        return deleted

    @staticmethod
    def backfill_derived_columns(batch_size: int = BACKFILL_BATCH_SIZE) -> BackfillResult:
        """
        Fills derived columns for rows stored before they existed. Rows with
        data and at least one NULL derived column are scanned; only the NULL
        columns are written, stored values are never overwritten.
        """
        scanned = 0
        updated = 0
        last_id = 0
        while True:
            rows = (
                TelemetryEventRecord.including_deleted()
                .get_query(
                    TelemetryEventRecord.id > last_id,
                    TelemetryEventRecord.data.is_not(None),
                    or_(*(getattr(TelemetryEventRecord, column).is_(None) for column in DERIVED_COLUMNS)),
                )
                .order_by(TelemetryEventRecord.id.asc())
                .limit(batch_size)
                .all()
            )
            if not rows:
                break

            for row in rows:
                last_id = row.id
                scanned += 1
                if not isinstance(row.data, dict) or not row.data:
                    continue
                derived = derive_fields(
                    row.area or '',
                    row.event_name or '',
                    bool(row.success),
                    {'id': row.user_id} if row.user_id else None,
                    row.data,
                )
                proposed = derived.to_dict()
                changes = {
                    column: proposed[column]
                    for column in DERIVED_COLUMNS
                    if getattr(row, column) is None and proposed.get(column) is not None
                }
                if changes:
                    for key, value in changes.items():
                        setattr(row, key, value)
                    updated += 1
            db.session.flush()

        if updated:
            logger.info('derived columns backfilled', scanned=scanned, updated=updated)
            EventService._invalidate_on_change(updated)
        return BackfillResult(scanned=scanned, updated=updated)

    @staticmethod
    def get_setting(key: str) -> Optional[str]:
        setting = Setting.get_or_none(key=key)
        return setting.value if setting else None

    @staticmethod
    def get_json_setting(key: str, default: Any = None) -> Any:
        raw = EventService.get_setting(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning('setting is not valid JSON', key=key)
            return default

    @staticmethod
    def save_setting(key: str, value: Optional[str]) -> None:
        Setting.upsert(
            values=SettingCreate(key=key, value=value).to_dict() | {'updated_at': utc_now()},
            conflict_keys=['key'],
            update_keys=['value', 'updated_at'],
        )

    @staticmethod
    def _invalidate_on_change(changed: int) -> None:
        if changed:
            on_commit(invalidate_event_caches)
