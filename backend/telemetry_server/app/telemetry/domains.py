import datetime
from typing import Any, Dict, Optional

from pydantic import Field

from telemetry_server.common.domain import BaseDomain
from telemetry_server.common.utils import to_naive_utc


class FieldError(BaseDomain):
    field: str
    message: str


class DerivedFields(BaseDomain):
    """
    Denormalised columns computed from the event's nested data
    """

    event_type: str
    org_id: Optional[str] = None
    user_name: Optional[str] = None
    tool_name: Optional[str] = None
    company_name: Optional[str] = None
    error_message: Optional[str] = None


def _string_member(obj: Optional[Dict[str, Any]], key: str) -> Optional[str]:
    if not isinstance(obj, dict):
        return None
    value = obj.get(key)
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    value = str(value).strip()
    return value or None


class TelemetryEvent(BaseDomain):
    """
    Canonical event. Both wire versions parse into this shape.
    """

    area: str
    event: str
    success: bool
    timestamp: str
    occurred_at: datetime.datetime
    telemetry_schema_version: int
    server: Optional[Dict[str, Any]] = None
    client: Optional[Dict[str, Any]] = None
    session: Optional[Dict[str, Any]] = None
    user: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    received_at: Optional[datetime.datetime] = None

    # Derived
    event_type: str
    org_id: Optional[str] = None
    user_name: Optional[str] = None
    tool_name: Optional[str] = None
    company_name: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def server_id(self) -> Optional[str]:
        return _string_member(self.server, 'id')

    @property
    def server_version(self) -> Optional[str]:
        return _string_member(self.server, 'version')

    @property
    def session_id(self) -> Optional[str]:
        return _string_member(self.session, 'id')

    @property
    def user_id(self) -> Optional[str]:
        return _string_member(self.user, 'id')

    @property
    def allow_missing_user(self) -> bool:
        return self.data.get('allowMissingUser') is True

    def summary(self) -> Dict[str, Any]:
        """
        Log safe projection, never includes `data`
        """
        return {
            'area': self.area,
            'event': self.event,
            'success': self.success,
            'event_type': self.event_type,
            'server_id': self.server_id,
            'session_id': self.session_id,
            'user_id': self.user_id,
            'timestamp': self.timestamp,
        }

    def to_payload(self) -> Dict[str, Any]:
        """
        JSON form carried by the persistence queue, see `from_payload`
        """
        return self.to_json_dict()

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'TelemetryEvent':
        event = cls.model_validate(payload)
        # Naive datetimes round trip as naive, anything with an offset is normalised
        event.occurred_at = to_naive_utc(event.occurred_at)
        if event.received_at is not None:
            event.received_at = to_naive_utc(event.received_at)
        return event


class IngestResponse(BaseDomain):
    status: str
    received_at: Optional[str] = None
    reason: Optional[str] = None
