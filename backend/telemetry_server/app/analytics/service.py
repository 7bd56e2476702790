"""
Read side over stored telemetry.

Every query here works on logical sessions and skips soft deleted rows.
Dialect differences (day bucketing, sizes) come from the database adapter.
"""

import datetime
import json
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import case, func

from telemetry_server import settings
from telemetry_server.app.analytics.domains import (
    DailyCount,
    DailyEventTypeCounts,
    DatabaseSize,
    EventFilters,
    EventPage,
    EventStats,
    EventTypeCount,
    SessionSummary,
    TeamMapping,
    TelemetryUser,
    TopTeam,
    TopTeams,
    TopUser,
    TopUsers,
    ToolUsage,
    ToolUsageStats,
)
from telemetry_server.app.events.domains import EventRead
from telemetry_server.app.events.models import TelemetryEventRecord
from telemetry_server.app.events.service import EventService, pseudo_session_id
from telemetry_server.app.events.stitcher import logical_session_clause
from telemetry_server.app.telemetry.constants import ACTIVE_SESSION_THRESHOLD, Area, EventType
from telemetry_server.app.telemetry.extractors import build_user_label, extract_display_name
from telemetry_server.common.exceptions import APIException
from telemetry_server.common.utils import clamp, format_bytes, isoformat_utc, parse_utc_timestamp, utc_now
from telemetry_server.network.cache.cache import (
    EVENTS_TAG,
    SESSIONS_TAG,
    USERS_TAG,
    cache_key,
    sessions_cache,
    stats_cache,
    user_ids_cache,
)
from telemetry_server.network.database import db
from telemetry_server.network.database.adapter import database_size, day_bucket

MAX_API_LIMIT = 1000
MAX_EXPORT_LIMIT = 50000
DEFAULT_EVENTS_LIMIT = 50
# Counting every matching row is skipped for deep pages
COUNT_LIMIT_THRESHOLD = 100
NO_USERS_SENTINEL = '__none__'

DEFAULT_SESSIONS_LIMIT = 50
DEFAULT_DAYS = 30
MAX_DAYS = 365
DEFAULT_TOP_USERS_LIMIT = 3
DEFAULT_TOP_USERS_DAYS = 3
MAX_TOP_LIMIT = 500
DEFAULT_TOP_TEAMS_LIMIT = 5
TOOL_USAGE_LIMIT = 6

ORG_TEAM_MAPPINGS_SETTING = 'org_team_mappings'

ORDERABLE_COLUMNS = {
    'id': TelemetryEventRecord.id,
    'event': TelemetryEventRecord.event,
    'timestamp': TelemetryEventRecord.timestamp,
    'created_at': TelemetryEventRecord.created_at,
    'server_id': TelemetryEventRecord.server_id,
}
ORDER_DIRECTIONS = ('ASC', 'DESC')

E = TelemetryEventRecord


def _logical_session_id():
    return func.coalesce(E.parent_session_id, E.session_id)


def _area_or_general():
    # Rows stored before areas existed count as general
    return func.coalesce(E.area, Area.GENERAL.value)


def _count_of(event_types: Iterable[str]):
    return func.sum(case((E.event.in_(list(event_types)), 1), else_=0))


def _parse_date_param(name: str, value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    parsed = parse_utc_timestamp(value)
    if parsed is None:
        raise APIException(f'Invalid {name}: {value}')
    return parsed


def _day_range(days: int, as_of: Optional[datetime.datetime]) -> list[datetime.date]:
    today = (as_of or utc_now()).date()
    start = today - datetime.timedelta(days=days - 1)
    return [start + datetime.timedelta(days=offset) for offset in range(days)]


def _day_start(day: datetime.date) -> datetime.datetime:
    return datetime.datetime(day.year, day.month, day.day)


def _bucket_key(value: Any) -> str:
    # SQLite answers text, PostgreSQL a date
    return str(value)[:10]


class AnalyticsService:
    @staticmethod
    def list_events(
        filters: EventFilters,
        limit: int = DEFAULT_EVENTS_LIMIT,
        offset: int = 0,
        order_by: str = 'created_at',
        order: str = 'DESC',
    ) -> EventPage:
        """
        Filtered page of events. `total` is only computed for the first page or
        small pages and is None otherwise.
        """
        limit = clamp(limit, 1, MAX_API_LIMIT)
        offset = max(0, offset)
        column = ORDERABLE_COLUMNS.get(order_by)
        if column is None:
            raise APIException(f'Invalid orderBy: {order_by}. Allowed: {", ".join(ORDERABLE_COLUMNS)}')
        direction = order.upper()
        if direction not in ORDER_DIRECTIONS:
            raise APIException(f'Invalid order: {order}. Allowed: ASC, DESC')

        if NO_USERS_SENTINEL in filters.user_ids:
            return EventPage(events=[], total=0, limit=limit, offset=offset, has_more=False)

        query = E.get_query(*AnalyticsService._event_clauses(filters))
        total = None
        if offset == 0 or limit <= COUNT_LIMIT_THRESHOLD:
            total = query.count()

        ordering = column.asc() if direction == 'ASC' else column.desc()
        rows = query.order_by(ordering, E.id.desc()).limit(limit).offset(offset).all()
        events = [EventRead.model_validate(row) for row in rows]

        if total is None:
            has_more = len(events) == limit
        else:
            has_more = offset + len(events) < total
        return EventPage(events=events, total=total, limit=limit, offset=offset, has_more=has_more)

    @staticmethod
    def _event_clauses(filters: EventFilters) -> list:
        clauses = []
        if filters.areas:
            clauses.append(_area_or_general().in_(filters.areas))
        elif filters.event_types:
            clauses.append(E.event.in_(filters.event_types))
        if filters.server_id:
            clauses.append(E.server_id == filters.server_id)
        if filters.session_id:
            clauses.append(logical_session_clause(filters.session_id))
        if filters.org_id:
            clauses.append(E.org_id == filters.org_id)
        if filters.user_ids:
            clauses.append(E.user_id.in_(filters.user_ids))

        start = _parse_date_param('startDate', filters.start_date)
        if start is not None:
            clauses.append(E.created_at >= start)
        end = _parse_date_param('endDate', filters.end_date)
        if end is not None:
            clauses.append(E.created_at <= end)
        return clauses

    @staticmethod
    def get_event(event_id: int) -> Optional[EventRead]:
        return EventService.get_event(event_id)

    @staticmethod
    def get_event_type_stats(session_id: Optional[str] = None, user_ids: Optional[List[str]] = None) -> List[EventTypeCount]:
        user_ids = user_ids or []
        if NO_USERS_SENTINEL in user_ids:
            return []

        cacheable = not session_id and not user_ids
        key = cache_key('event-types')
        if cacheable and (cached := stats_cache.get(key)) is not None:
            return cached

        query = db.session.query(E.event, func.count(E.id).label('count')).filter(E.deleted_at.is_(None))
        if session_id:
            query = query.filter(logical_session_clause(session_id))
        if user_ids:
            query = query.filter(E.user_id.in_(user_ids))
        rows = query.group_by(E.event).order_by(func.count(E.id).desc(), E.event.asc()).all()

        result = [EventTypeCount(event=row.event, count=row.count) for row in rows]
        if cacheable:
            stats_cache.set(key, result, tags=(EVENTS_TAG,))
        return result

    @staticmethod
    def get_stats(
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> EventStats:
        key = f'stats:{start_date or ""}:{end_date or ""}:{event_type or ""}'
        cached = stats_cache.get(key)
        if cached is not None:
            return cached

        query = db.session.query(E.event, func.count(E.id).label('count')).filter(E.deleted_at.is_(None))
        start = _parse_date_param('startDate', start_date)
        if start is not None:
            query = query.filter(E.created_at >= start)
        end = _parse_date_param('endDate', end_date)
        if end is not None:
            query = query.filter(E.created_at <= end)
        if event_type:
            query = query.filter(E.event == event_type)

        by_event_type = {row.event: row.count for row in query.group_by(E.event).all()}
        stats = EventStats(total=sum(by_event_type.values()), by_event_type=by_event_type)
        stats_cache.set(key, stats, tags=(EVENTS_TAG,))
        return stats

    @staticmethod
    def list_sessions(
        user_id: Optional[str] = None,
        limit: int = DEFAULT_SESSIONS_LIMIT,
        offset: int = 0,
        include_users_without_sessions: bool = False,
        as_of: Optional[datetime.datetime] = None,
    ) -> List[SessionSummary]:
        """
        Logical sessions ordered by their latest event. With
        `include_users_without_sessions` events lacking a session are grouped
        per user and UTC day under pseudo session ids.
        """
        limit = clamp(limit, 1, MAX_API_LIMIT)
        offset = max(0, offset)
        cacheable = (
            user_id is None
            and limit == DEFAULT_SESSIONS_LIMIT
            and offset == 0
            and not include_users_without_sessions
            and as_of is None
        )
        key = cache_key('sessions')
        if cacheable and (cached := sessions_cache.get(key)) is not None:
            return cached

        now = as_of or utc_now()
        if include_users_without_sessions:
            # Both sources are merged before paging
            sessions = AnalyticsService._logical_sessions(user_id, now)
            sessions += AnalyticsService._pseudo_sessions(user_id)
            sessions.sort(key=lambda session: session.session_id)
            sessions.sort(key=lambda session: session.last_event or '', reverse=True)
            sessions = sessions[offset : offset + limit]
        else:
            sessions = AnalyticsService._logical_sessions(user_id, now, limit=limit, offset=offset)

        if cacheable:
            sessions_cache.set(key, sessions, tags=(SESSIONS_TAG,))
        return sessions

    @staticmethod
    def _logical_sessions(
        user_id: Optional[str],
        now: datetime.datetime,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[SessionSummary]:
        logical_id = _logical_session_id()
        query = db.session.query(
            logical_id.label('session_id'),
            func.count(E.id).label('count'),
            func.min(E.timestamp).label('first_event'),
            func.max(E.timestamp).label('last_event'),
            func.max(E.user_name).label('user_name'),
            _count_of([EventType.SESSION_START.value]).label('starts'),
            _count_of([EventType.SESSION_END.value]).label('ends'),
        ).filter(E.deleted_at.is_(None), logical_id.is_not(None))
        if user_id:
            query = query.filter(E.user_id == user_id)
        query = query.group_by(logical_id).order_by(func.max(E.timestamp).desc(), logical_id.asc())
        if limit is not None:
            query = query.limit(limit).offset(offset)
        rows = query.all()
        if not rows:
            return []

        session_ids = [row.session_id for row in rows]
        first_users = AnalyticsService._first_users(session_ids)
        start_names = AnalyticsService._session_start_names(session_ids)

        sessions = []
        for row in rows:
            is_active = bool(row.starts) and not row.ends and now - row.last_event < ACTIVE_SESSION_THRESHOLD
            sessions.append(
                SessionSummary(
                    session_id=row.session_id,
                    count=row.count,
                    first_event=isoformat_utc(row.first_event),
                    last_event=isoformat_utc(row.last_event),
                    user_id=first_users.get(row.session_id),
                    user_name=start_names.get(row.session_id) or row.user_name,
                    is_active=is_active,
                )
            )
        return sessions

    @staticmethod
    def _first_users(session_ids: List[str]) -> Dict[str, str]:
        logical_id = _logical_session_id()
        rows = (
            db.session.query(logical_id.label('session_id'), E.user_id)
            .filter(E.deleted_at.is_(None), E.user_id.is_not(None), logical_id.in_(session_ids))
            .order_by(E.timestamp.asc(), E.id.asc())
            .all()
        )
        first: Dict[str, str] = {}
        for row in rows:
            first.setdefault(row.session_id, row.user_id)
        return first

    @staticmethod
    def _session_start_names(session_ids: List[str]) -> Dict[str, str]:
        """
        Display name from the first session_start of each session
        """
        logical_id = _logical_session_id()
        rows = (
            db.session.query(logical_id.label('session_id'), E.data)
            .filter(
                E.deleted_at.is_(None),
                E.event == EventType.SESSION_START.value,
                logical_id.in_(session_ids),
            )
            .order_by(E.timestamp.asc(), E.id.asc())
            .all()
        )
        names: Dict[str, str] = {}
        for row in rows:
            if row.session_id in names:
                continue
            name = extract_display_name(row.data)
            if name:
                names[row.session_id] = name
        return names

    @staticmethod
    def _pseudo_sessions(user_id: Optional[str]) -> List[SessionSummary]:
        day = day_bucket(E.timestamp)
        query = db.session.query(
            E.user_id,
            day.label('day'),
            func.count(E.id).label('count'),
            func.min(E.timestamp).label('first_event'),
            func.max(E.timestamp).label('last_event'),
            func.max(E.user_name).label('user_name'),
        ).filter(
            E.deleted_at.is_(None),
            E.session_id.is_(None),
            E.parent_session_id.is_(None),
            E.user_id.is_not(None),
            E.user_id != '',
        )
        if user_id:
            query = query.filter(E.user_id == user_id)

        sessions = []
        for row in query.group_by(E.user_id, day).all():
            sessions.append(
                SessionSummary(
                    session_id=pseudo_session_id(row.user_id, datetime.date.fromisoformat(_bucket_key(row.day))),
                    count=row.count,
                    first_event=isoformat_utc(row.first_event),
                    last_event=isoformat_utc(row.last_event),
                    user_id=row.user_id,
                    user_name=row.user_name,
                    is_active=False,
                )
            )
        return sessions

    @staticmethod
    def get_daily_stats(days: int = DEFAULT_DAYS, as_of: Optional[datetime.datetime] = None) -> List[DailyCount]:
        """
        Events per UTC day, oldest first, missing days filled with zero
        """
        days = clamp(days, 1, MAX_DAYS)
        day_range = _day_range(days, as_of)
        bucket = day_bucket(E.timestamp)
        rows = (
            db.session.query(bucket.label('day'), func.count(E.id).label('count'))
            .filter(E.deleted_at.is_(None), E.timestamp >= _day_start(day_range[0]))
            .group_by(bucket)
            .all()
        )
        counts = {_bucket_key(row.day): row.count for row in rows}
        return [DailyCount(date=day.isoformat(), count=counts.get(day.isoformat(), 0)) for day in day_range]

    @staticmethod
    def get_daily_stats_by_event_type(
        days: int = DEFAULT_DAYS, as_of: Optional[datetime.datetime] = None
    ) -> List[DailyEventTypeCounts]:
        days = clamp(days, 1, MAX_DAYS)
        day_range = _day_range(days, as_of)
        bucket = day_bucket(E.timestamp)
        rows = (
            db.session.query(
                bucket.label('day'),
                _count_of([EventType.SESSION_START.value]).label('session_starts'),
                _count_of([EventType.TOOL_CALL.value, EventType.TOOL_ERROR.value]).label('tool_events'),
                _count_of([EventType.TOOL_ERROR.value]).label('error_events'),
            )
            .filter(E.deleted_at.is_(None), E.timestamp >= _day_start(day_range[0]))
            .group_by(bucket)
            .all()
        )
        by_day = {_bucket_key(row.day): row for row in rows}

        series = []
        for day in day_range:
            row = by_day.get(day.isoformat())
            series.append(
                DailyEventTypeCounts(
                    date=day.isoformat(),
                    start_sessions_without_end=int(row.session_starts or 0) if row else 0,
                    tool_events=int(row.tool_events or 0) if row else 0,
                    error_events=int(row.error_events or 0) if row else 0,
                )
            )
        return series

    @staticmethod
    def get_top_users(
        limit: int = DEFAULT_TOP_USERS_LIMIT,
        days: int = DEFAULT_TOP_USERS_DAYS,
        as_of: Optional[datetime.datetime] = None,
    ) -> TopUsers:
        limit = clamp(limit, 1, MAX_TOP_LIMIT)
        days = clamp(days, 1, MAX_DAYS)
        cutoff = (as_of or utc_now()) - datetime.timedelta(days=days)

        event_count = func.count(E.id)
        rows = (
            db.session.query(E.user_id, event_count.label('event_count'))
            .filter(
                E.deleted_at.is_(None),
                E.created_at >= cutoff,
                E.user_id.is_not(None),
                E.user_id != '',
            )
            .group_by(E.user_id)
            .order_by(event_count.desc(), E.user_id.asc())
            .limit(limit)
            .all()
        )

        users = []
        for row in rows:
            latest = (
                db.session.query(E.data)
                .filter(E.deleted_at.is_(None), E.user_id == row.user_id)
                .order_by(E.timestamp.desc(), E.id.desc())
                .first()
            )
            label = build_user_label(row.user_id, latest.data if latest else None)
            users.append(TopUser(id=row.user_id, label=label, event_count=row.event_count))
        return TopUsers(users=users, days=days)

    @staticmethod
    def resolve_team_mappings(raw_mappings: Any) -> List[TeamMapping]:
        """
        Mappings from the request, or the stored operator setting when the
        request carries none. Entries that are not objects or carry wrongly
        typed fields are skipped.
        """
        if not raw_mappings:
            raw_mappings = EventService.get_json_setting(ORG_TEAM_MAPPINGS_SETTING, default=[])
        if not isinstance(raw_mappings, list):
            return []

        mappings = []
        for position, item in enumerate(raw_mappings):
            if not isinstance(item, dict):
                continue
            try:
                mappings.append(TeamMapping.model_validate(item))
            except ValidationError as exc:
                logger.warning('skipping malformed team mapping', position=position, errors=exc.error_count())
        return mappings

    @staticmethod
    def get_top_teams(
        mappings: List[TeamMapping],
        limit: int = DEFAULT_TOP_TEAMS_LIMIT,
        days: int = DEFAULT_TOP_USERS_DAYS,
        as_of: Optional[datetime.datetime] = None,
    ) -> TopTeams:
        """
        Event counts per org folded into the teams the orgs are mapped to.
        Orgs and team names are matched case insensitively.
        """
        limit = clamp(limit, 1, MAX_TOP_LIMIT)
        days = clamp(days, 1, MAX_DAYS)

        teams: Dict[str, TopTeam] = {}
        org_to_team: Dict[str, str] = {}
        org_labels: Dict[str, str] = {}
        clients: Dict[str, list[str]] = {}
        for mapping in mappings:
            team_name = (mapping.team_name or '').strip()
            org_identifier = (mapping.org_identifier or '').strip()
            if mapping.active is False or not team_name or not org_identifier:
                continue

            team_key = team_name.lower()
            org_key = org_identifier.lower()
            team = teams.setdefault(team_key, TopTeam(id=team_key, label=team_name))
            org_to_team[org_key] = team_key

            if team.team_id is None and mapping.team_id:
                team.team_id = mapping.team_id
            if mapping.has_logo:
                team.has_logo = True
            if mapping.logo_url and not team.logo_url:
                team.logo_url = mapping.logo_url.strip()
            if mapping.color and not team.color:
                team.color = mapping.color.strip()

            client_name = (mapping.client_name or '').strip()
            if client_name and client_name not in clients.setdefault(team_key, []):
                clients[team_key].append(client_name)
            org_labels.setdefault(org_key, client_name or org_identifier)

        if not org_to_team:
            return TopTeams(teams=[], days=days)

        cutoff = (as_of or utc_now()) - datetime.timedelta(days=days)
        event_count = func.count(E.id)
        rows = (
            db.session.query(E.org_id, event_count.label('event_count'))
            .filter(
                E.deleted_at.is_(None),
                E.created_at >= cutoff,
                E.org_id.is_not(None),
                E.org_id != '',
            )
            .group_by(E.org_id)
            .order_by(event_count.desc(), E.org_id.asc())
            .all()
        )

        for row in rows:
            org_key = row.org_id.strip().lower()
            team_key = org_to_team.get(org_key)
            if team_key is None:
                continue
            team = teams[team_key]
            team.event_count += row.event_count
            label = org_labels.get(org_key) or row.org_id
            if label not in team.orgs:
                team.orgs.append(label)

        ranked = []
        for team_key, team in teams.items():
            if team.event_count <= 0:
                continue
            team.client_name = ' · '.join(clients.get(team_key, []))
            ranked.append(team)
        ranked.sort(key=lambda team: (-team.event_count, team.label.lower()))
        return TopTeams(teams=ranked[:limit], days=days)

    @staticmethod
    def get_tool_usage_stats(days: int = DEFAULT_DAYS, as_of: Optional[datetime.datetime] = None) -> ToolUsageStats:
        days = clamp(days, 1, MAX_DAYS)
        start = _day_start(_day_range(days, as_of)[0])

        successful = _count_of([EventType.TOOL_CALL.value])
        errors = _count_of([EventType.TOOL_ERROR.value])
        rows = (
            db.session.query(
                E.tool_name.label('tool'),
                successful.label('successful'),
                errors.label('errors'),
            )
            .filter(
                E.deleted_at.is_(None),
                E.timestamp >= start,
                E.event.in_([EventType.TOOL_CALL.value, EventType.TOOL_ERROR.value]),
                E.tool_name.is_not(None),
                E.tool_name != '',
            )
            .group_by(E.tool_name)
            .order_by((successful + errors).desc(), E.tool_name.asc())
            .limit(TOOL_USAGE_LIMIT)
            .all()
        )
        tools = [
            ToolUsage(
                tool=row.tool,
                total=int(row.successful or 0) + int(row.errors or 0),
                successful=int(row.successful or 0),
                errors=int(row.errors or 0),
            )
            for row in rows
        ]
        return ToolUsageStats(tools=tools, days=days)

    @staticmethod
    def list_telemetry_users(limit: Optional[int] = None, offset: int = 0) -> List[TelemetryUser]:
        """
        Every user that sent events, most recently active first. Only the
        unpaginated list is cached.
        """
        offset = max(0, offset)
        if limit is not None:
            limit = clamp(limit, 1, MAX_API_LIMIT)
        cacheable = limit is None and offset == 0
        key = cache_key('userStats', scope='all')
        if cacheable and (cached := user_ids_cache.get(key)) is not None:
            return cached

        last_event = func.max(E.timestamp)
        query = (
            db.session.query(
                E.user_id,
                func.max(E.user_name).label('user_name'),
                func.count(E.id).label('event_count'),
                last_event.label('last_event'),
            )
            .filter(E.deleted_at.is_(None), E.user_id.is_not(None), E.user_id != '')
            .group_by(E.user_id)
            .order_by(last_event.desc(), E.user_id.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        if offset:
            query = query.offset(offset)

        users = [
            TelemetryUser(
                id=row.user_id,
                label=(row.user_name or '').strip() or row.user_id,
                event_count=row.event_count,
                last_event=isoformat_utc(row.last_event),
            )
            for row in query.all()
        ]
        if cacheable:
            user_ids_cache.set(key, users, tags=(USERS_TAG,))
        return users

    @staticmethod
    def export_events(filters: EventFilters, limit: int = 10000) -> str:
        """
        Events as JSON lines, oldest first, for log shippers
        """
        limit = clamp(limit, 1, MAX_EXPORT_LIMIT)
        rows = (
            E.get_query(*AnalyticsService._event_clauses(filters))
            .order_by(E.created_at.asc(), E.id.asc())
            .limit(limit)
            .all()
        )
        lines = []
        for row in rows:
            lines.append(
                json.dumps(
                    {
                        '@timestamp': isoformat_utc(row.timestamp or row.created_at),
                        '@version': '1',
                        'event': row.event,
                        'message': f'Telemetry event: {row.event}',
                        'fields': {
                            'id': row.id,
                            'serverId': row.server_id,
                            'version': row.version,
                            'sessionId': row.session_id,
                            'userId': row.user_id,
                            'receivedAt': isoformat_utc(row.received_at),
                            'createdAt': isoformat_utc(row.created_at),
                        },
                        'data': row.data or {},
                    },
                    default=str,
                )
            )
        return '\n'.join(lines)

    @staticmethod
    def get_database_size() -> DatabaseSize:
        size = database_size(db.session)
        max_size = settings.DB_MAX_SIZE
        percentage = round(size / max_size * 100, 2) if max_size > 0 else 0.0
        size_formatted = format_bytes(size)
        max_size_formatted = format_bytes(max_size)
        logger.debug('database size read', size=size, max_size=max_size)
        return DatabaseSize(
            size=size,
            max_size=max_size,
            size_formatted=size_formatted,
            max_size_formatted=max_size_formatted,
            percentage=percentage,
            display_text=f'{size_formatted} / {max_size_formatted} ({percentage}%)',
        )
