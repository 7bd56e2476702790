from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from telemetry_server.app.events.domains import EventRead
from telemetry_server.common.domain import BaseDomain, RowDomain


class EventFilters(BaseDomain):
    """Query parameters of the events listing after coercion"""

    event_types: List[str] = Field(default_factory=list)
    areas: List[str] = Field(default_factory=list)
    user_ids: List[str] = Field(default_factory=list)
    server_id: Optional[str] = None
    session_id: Optional[str] = None
    org_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class EventPage(BaseDomain):
    events: List[EventRead]
    total: Optional[int] = None
    limit: int
    offset: int
    has_more: bool


class EventDetail(BaseDomain):
    status: str = 'ok'
    event: EventRead


class EventTypeCount(RowDomain):
    event: str
    count: int


class SessionSummary(RowDomain):
    session_id: str
    count: int
    first_event: Optional[str] = None
    last_event: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    is_active: bool = False


class DailyCount(BaseDomain):
    date: str
    count: int = 0


class DailyEventTypeCounts(BaseDomain):
    date: str
    start_sessions_without_end: int = 0
    tool_events: int = 0
    error_events: int = 0


class TopUser(BaseDomain):
    id: str
    label: str
    event_count: int


class TopUsers(BaseDomain):
    users: List[TopUser]
    days: int


class TeamMapping(BaseDomain):
    """
    One org to team assignment as configured by an operator
    """

    model_config = ConfigDict(extra='ignore')

    org_identifier: Optional[str] = None
    team_name: Optional[str] = None
    client_name: Optional[str] = None
    color: Optional[str] = None
    active: Optional[bool] = True
    team_id: Optional[Any] = None
    has_logo: Optional[bool] = False
    logo_url: Optional[str] = None


class TopTeam(BaseDomain):
    id: str
    label: str
    client_name: str = ''
    orgs: List[str] = Field(default_factory=list)
    color: str = ''
    event_count: int = 0
    team_id: Optional[Any] = None
    has_logo: bool = False
    logo_url: str = ''


class TopTeams(BaseDomain):
    teams: List[TopTeam]
    days: int


class ToolUsage(BaseDomain):
    tool: str
    total: int
    successful: int
    errors: int


class ToolUsageStats(BaseDomain):
    tools: List[ToolUsage]
    days: int


class DatabaseSize(BaseDomain):
    status: str = 'ok'
    size: int
    max_size: int
    size_formatted: str
    max_size_formatted: str
    percentage: float
    display_text: str


class EventStats(BaseDomain):
    total: int
    # Keys are event types, left as stored
    by_event_type: Dict[str, int] = Field(default_factory=dict)


class TelemetryUser(BaseDomain):
    id: str
    label: str
    event_count: int
    last_event: Optional[str] = None
