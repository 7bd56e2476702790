from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from telemetry_server.app.events.domains import (
    DiscardedEventCreate,
    DiscardedEventRead,
    EventCreate,
    EventRead,
    OrgCreate,
    OrgRead,
    SettingCreate,
    SettingRead,
)
from telemetry_server.common.model import BaseModel
from telemetry_server.common.utils import utc_now
from telemetry_server.network.database.adapter import JSONPayload, register_json_containment_index
from telemetry_server.network.database.repository.mixin import ActiveRecordManager


class TelemetryEventRecord(BaseModel[EventRead, EventCreate]):
    """
    One stored telemetry event. `event` keeps the legacy event type,
    `event_name` the moment within the area as reported.
    """

    __tablename__ = 'telemetry_events'

    event: Mapped[str] = mapped_column(String(50), nullable=False)
    area: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    event_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    telemetry_schema_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    server_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    version: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Derived from data at insert
    org_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tool_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, default=None)

    __read_domain__ = EventRead
    __create_domain__ = EventCreate
    query_manager = ActiveRecordManager

    # Composite indexes cover their leading column, no single column duplicates
    __table_args__ = (
        Index('idx_telemetry_events_event_created', 'event', 'created_at'),
        Index('idx_telemetry_events_user_created', 'user_id', 'created_at'),
        Index('idx_telemetry_events_org_created', 'org_id', 'created_at'),
        Index('idx_telemetry_events_tool_created', 'tool_name', 'created_at'),
        Index('idx_telemetry_events_session_timestamp', 'session_id', 'timestamp'),
        Index('idx_telemetry_events_parent_session_timestamp', 'parent_session_id', 'timestamp'),
        Index('idx_telemetry_events_deleted_created', 'deleted_at', 'created_at'),
        Index('idx_telemetry_events_server_user_event_timestamp', 'server_id', 'user_id', 'event', 'timestamp'),
        Index('idx_telemetry_events_timestamp', 'timestamp'),
    )


register_json_containment_index(TelemetryEventRecord.__table__, 'data')


class Org(BaseModel[OrgRead, OrgCreate]):
    __tablename__ = 'orgs'

    server_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=utc_now, onupdate=utc_now, nullable=True)

    __read_domain__ = OrgRead
    __create_domain__ = OrgCreate


class DiscardedEvent(BaseModel[DiscardedEventRead, DiscardedEventCreate]):
    """Append only log of rejected payloads."""

    __tablename__ = 'discarded_events'

    raw_payload: Mapped[Any] = mapped_column(JSONPayload, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __read_domain__ = DiscardedEventRead
    __create_domain__ = DiscardedEventCreate

    __table_args__ = (Index('idx_discarded_events_received', 'received_at'),)


class Setting(BaseModel[SettingRead, SettingCreate]):
    """Operator configuration, values are JSON strings."""

    __tablename__ = 'settings'

    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=utc_now, onupdate=utc_now, nullable=True)

    __read_domain__ = SettingRead
    __create_domain__ = SettingCreate
