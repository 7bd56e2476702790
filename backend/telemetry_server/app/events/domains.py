from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import Field

from telemetry_server.common.domain import BaseDomain, RowDomain


class EventCreate(RowDomain):
    event: str
    area: Optional[str] = None
    event_name: Optional[str] = None
    success: Optional[bool] = None
    telemetry_schema_version: Optional[int] = None
    timestamp: datetime
    server_id: Optional[str] = None
    version: Optional[str] = None
    session_id: Optional[str] = None
    parent_session_id: Optional[str] = None
    user_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    received_at: Optional[datetime] = None
    org_id: Optional[str] = None
    user_name: Optional[str] = None
    tool_name: Optional[str] = None
    company_name: Optional[str] = None
    error_message: Optional[str] = None


class EventRead(EventCreate):
    id: int
    created_at: datetime
    deleted_at: Optional[datetime] = None


class OrgCreate(RowDomain):
    server_id: str
    company_name: Optional[str] = None


class OrgRead(OrgCreate):
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None


class DiscardedEventCreate(RowDomain):
    raw_payload: Any = None
    reason: str
    received_at: datetime


class DiscardedEventRead(DiscardedEventCreate):
    id: int
    created_at: datetime


class SettingCreate(RowDomain):
    key: str
    value: Optional[str] = None


class SettingRead(SettingCreate):
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None


class SettingUpdateRequest(BaseDomain):
    value: Any = None


class SettingResponse(BaseDomain):
    key: str
    value: Any = None


class TrashPage(BaseDomain):
    status: str = 'ok'
    events: list[Dict[str, Any]]
    total: int
    limit: int
    offset: int
    has_more: bool


class DeleteResult(BaseDomain):
    status: str = 'ok'
    deleted: int
    message: Optional[str] = None
    session_id: Optional[str] = None


class EventActionResult(BaseDomain):
    status: str = 'ok'
    message: str
    event_id: int


class OrgTeamMappings(BaseDomain):
    status: str = 'ok'
    mappings: list[Dict[str, Any]]


class OrgTeamMappingsUpdate(BaseDomain):
    mappings: list[Dict[str, Any]]


class BackfillResult(BaseDomain):
    scanned: int
    updated: int
