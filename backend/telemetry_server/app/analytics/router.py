import json
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse, Response

from telemetry_server.app.analytics.domains import (
    DatabaseSize,
    EventDetail,
    EventFilters,
    EventPage,
    EventStats,
    EventTypeCount,
    SessionSummary,
    TelemetryUser,
    TopTeams,
    TopUsers,
    ToolUsageStats,
)
from telemetry_server.app.analytics.service import (
    DEFAULT_DAYS,
    DEFAULT_EVENTS_LIMIT,
    DEFAULT_SESSIONS_LIMIT,
    DEFAULT_TOP_TEAMS_LIMIT,
    DEFAULT_TOP_USERS_DAYS,
    DEFAULT_TOP_USERS_LIMIT,
    AnalyticsService,
)
from telemetry_server.common.exceptions import error_response
from telemetry_server.common.utils import parse_bool_flag, utc_today

router = APIRouter()


@router.get('/events', response_model=EventPage)
def list_events(
    limit: int = DEFAULT_EVENTS_LIMIT,
    offset: int = 0,
    event_type: List[str] = Query([], alias='eventType'),
    area: List[str] = Query([]),
    server_id: Optional[str] = Query(None, alias='serverId'),
    session_id: Optional[str] = Query(None, alias='sessionId'),
    org_id: Optional[str] = Query(None, alias='orgId'),
    start_date: Optional[str] = Query(None, alias='startDate'),
    end_date: Optional[str] = Query(None, alias='endDate'),
    user_id: List[str] = Query([], alias='userId'),
    order_by: str = Query('created_at', alias='orderBy'),
    order: str = 'DESC',
) -> EventPage:
    filters = EventFilters(
        event_types=event_type,
        areas=area,
        user_ids=user_id,
        server_id=server_id,
        session_id=session_id,
        org_id=org_id,
        start_date=start_date,
        end_date=end_date,
    )
    return AnalyticsService.list_events(filters, limit=limit, offset=offset, order_by=order_by, order=order)


@router.get('/events/{event_id:int}', response_model=EventDetail)
def get_event(event_id: int) -> Union[EventDetail, JSONResponse]:
    event = AnalyticsService.get_event(event_id)
    if event is None:
        return error_response(status.HTTP_404_NOT_FOUND, 'Event not found')
    return EventDetail(event=event)


@router.get('/stats', response_model=EventStats)
def get_stats(
    start_date: Optional[str] = Query(None, alias='startDate'),
    end_date: Optional[str] = Query(None, alias='endDate'),
    event_type: Optional[str] = Query(None, alias='eventType'),
) -> EventStats:
    return AnalyticsService.get_stats(start_date=start_date, end_date=end_date, event_type=event_type)


@router.get('/event-types', response_model=List[EventTypeCount])
def get_event_types(
    session_id: Optional[str] = Query(None, alias='sessionId'),
    user_id: List[str] = Query([], alias='userId'),
) -> List[EventTypeCount]:
    return AnalyticsService.get_event_type_stats(session_id=session_id, user_ids=user_id)


@router.get('/sessions', response_model=List[SessionSummary])
def list_sessions(
    user_id: Optional[str] = Query(None, alias='userId'),
    limit: int = DEFAULT_SESSIONS_LIMIT,
    offset: int = 0,
    include_users_without_sessions: Optional[str] = Query(None, alias='includeUsersWithoutSessions'),
) -> List[SessionSummary]:
    return AnalyticsService.list_sessions(
        user_id=user_id,
        limit=limit,
        offset=offset,
        include_users_without_sessions=parse_bool_flag(include_users_without_sessions),
    )


@router.get('/daily-stats')
def get_daily_stats(
    days: int = DEFAULT_DAYS,
    by_event_type: Optional[str] = Query(None, alias='byEventType'),
) -> List[Dict[str, Any]]:
    """
    Zero filled series per UTC day. `byEventType` switches from one count to
    session starts, tool events and errors.
    """
    if parse_bool_flag(by_event_type):
        series = AnalyticsService.get_daily_stats_by_event_type(days=days)
    else:
        series = AnalyticsService.get_daily_stats(days=days)
    return [point.to_json_dict() for point in series]


@router.get('/top-users-today', response_model=TopUsers)
def get_top_users(limit: int = DEFAULT_TOP_USERS_LIMIT, days: int = DEFAULT_TOP_USERS_DAYS) -> TopUsers:
    return AnalyticsService.get_top_users(limit=limit, days=days)


@router.get('/top-teams-today', response_model=TopTeams)
def get_top_teams(
    limit: int = DEFAULT_TOP_TEAMS_LIMIT,
    days: int = DEFAULT_TOP_USERS_DAYS,
    mappings: Optional[str] = None,
) -> TopTeams:
    """
    Without `mappings` the stored org to team mappings are used
    """
    raw_mappings = []
    if mappings:
        try:
            raw_mappings = json.loads(mappings)
        except ValueError:
            raw_mappings = []
    resolved = AnalyticsService.resolve_team_mappings(raw_mappings)
    return AnalyticsService.get_top_teams(resolved, limit=limit, days=days)


@router.get('/tool-usage-stats', response_model=ToolUsageStats)
def get_tool_usage_stats(days: int = DEFAULT_DAYS) -> ToolUsageStats:
    return AnalyticsService.get_tool_usage_stats(days=days)


@router.get('/telemetry-users', response_model=List[TelemetryUser])
def list_telemetry_users(limit: Optional[int] = None, offset: int = 0) -> List[TelemetryUser]:
    return AnalyticsService.list_telemetry_users(limit=limit, offset=offset)


@router.get('/export/logs')
def export_logs(
    limit: int = 10000,
    event_type: List[str] = Query([], alias='eventType'),
    server_id: Optional[str] = Query(None, alias='serverId'),
    start_date: Optional[str] = Query(None, alias='startDate'),
    end_date: Optional[str] = Query(None, alias='endDate'),
) -> Response:
    filters = EventFilters(event_types=event_type, server_id=server_id, start_date=start_date, end_date=end_date)
    content = AnalyticsService.export_events(filters, limit=limit)
    filename = f'telemetry-logs-{utc_today().isoformat()}.jsonl'
    return Response(
        content=content,
        media_type='application/x-ndjson',
        headers={
            'Content-Disposition': f'attachment; filename="{filename}"',
            'Cache-Control': 'no-cache',
        },
    )


@router.get('/database-size', response_model=DatabaseSize)
def get_database_size() -> DatabaseSize:
    return AnalyticsService.get_database_size()
