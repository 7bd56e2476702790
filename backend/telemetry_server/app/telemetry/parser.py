import json
from typing import Any, Dict, Optional

from telemetry_server.app.telemetry.constants import Area, EventType, SchemaVersion
from telemetry_server.app.telemetry.domains import TelemetryEvent
from telemetry_server.app.telemetry.exceptions import TelemetryParseError
from telemetry_server.app.telemetry.extractors import derive_fields
from telemetry_server.common.utils import parse_utc_timestamp

# v1 event name -> (area, event)
V1_EVENT_MAPPING = {
    EventType.TOOL_CALL.value: (Area.TOOL.value, 'execution'),
    EventType.TOOL_ERROR.value: (Area.TOOL.value, 'execution'),
    EventType.SESSION_START.value: (Area.SESSION.value, 'session_start'),
    EventType.SESSION_END.value: (Area.SESSION.value, 'session_end'),
    EventType.ERROR.value: (Area.GENERAL.value, 'error_occurred'),
    EventType.CUSTOM.value: (Area.GENERAL.value, 'custom'),
}
V1_STRING_FIELDS = ('serverId', 'version', 'sessionId', 'userId')
V2_REQUIRED_FIELDS = ('schemaVersion', 'area', 'event', 'success', 'timestamp')
V2_OBJECT_FIELDS = ('server', 'client', 'session', 'user', 'data')


def detect_schema_version(raw: Dict[str, Any]) -> Optional[int]:
    schema_version = raw.get('schemaVersion')
    if isinstance(schema_version, (int, float)) and not isinstance(schema_version, bool):
        return int(schema_version) if schema_version == int(schema_version) else None
    if Area.has(raw.get('area')):
        return SchemaVersion.V2
    event_name = raw.get('event')
    if isinstance(event_name, str) and event_name in V1_EVENT_MAPPING:
        return SchemaVersion.V1
    return None


def _truncated(raw: Dict[str, Any], size: int = 200) -> str:
    return json.dumps(raw, default=str)[:size]


def _build_event(
    *,
    area: str,
    event: str,
    success: bool,
    timestamp: str,
    schema_version: int,
    server: Optional[Dict[str, Any]],
    client: Optional[Dict[str, Any]],
    session: Optional[Dict[str, Any]],
    user: Optional[Dict[str, Any]],
    data: Dict[str, Any],
) -> TelemetryEvent:
    occurred_at = parse_utc_timestamp(timestamp)
    if occurred_at is None:
        raise TelemetryParseError(f'Invalid timestamp: {timestamp}')

    derived = derive_fields(area, event, success, user, data)
    return TelemetryEvent(
        area=area,
        event=event,
        success=success,
        timestamp=timestamp,
        occurred_at=occurred_at,
        telemetry_schema_version=schema_version,
        server=server,
        client=client,
        session=session,
        user=user,
        data=data,
        **derived.to_dict(),
    )


def parse_v1(raw: Dict[str, Any]) -> TelemetryEvent:
    event_name = raw.get('event')
    timestamp = raw.get('timestamp')
    if not event_name or not timestamp:
        raise TelemetryParseError('V1 event missing required fields: event and timestamp')
    if not isinstance(event_name, str) or event_name not in V1_EVENT_MAPPING:
        raise TelemetryParseError(f'Invalid v1 event type: {event_name}')
    if not isinstance(timestamp, str):
        raise TelemetryParseError('timestamp must be a string')
    for field in V1_STRING_FIELDS:
        if raw.get(field) and not isinstance(raw[field], str):
            raise TelemetryParseError(f'{field} must be a string if present')
    data = raw.get('data') or {}
    if not isinstance(data, dict):
        raise TelemetryParseError('data must be an object if present')

    area, event = V1_EVENT_MAPPING[event_name]
    if event_name == EventType.TOOL_ERROR and (data.get('isValidationError') or data.get('errorType') == 'ZodError'):
        event = 'validation'

    if event_name in (EventType.TOOL_ERROR, EventType.ERROR):
        success = False
    elif event_name == EventType.CUSTOM:
        success = data.get('success') is not False
    else:
        success = True

    server_id, version = raw.get('serverId'), raw.get('version')
    session_id, user_id = raw.get('sessionId'), raw.get('userId')
    return _build_event(
        area=area,
        event=event,
        success=success,
        timestamp=timestamp,
        schema_version=SchemaVersion.V1,
        server={'id': server_id or None, 'version': version or None, 'capabilities': {}} if server_id or version else None,
        client=None,
        session={'id': session_id, 'transport': data.get('transport'), 'protocolVersion': None} if session_id else None,
        user={'id': user_id} if user_id else None,
        data=data,
    )


def parse_v2(raw: Dict[str, Any]) -> TelemetryEvent:
    for field in V2_REQUIRED_FIELDS:
        if field not in raw:
            raise TelemetryParseError(f'V2 event missing required field: {field}')
    if raw['schemaVersion'] != SchemaVersion.V2:
        raise TelemetryParseError(f'Invalid schemaVersion: {raw["schemaVersion"]}. Expected 2')
    if not Area.has(raw['area']):
        raise TelemetryParseError(f"Invalid area: {raw['area']}. Must be 'tool', 'session', or 'general'")
    if not isinstance(raw['success'], bool):
        raise TelemetryParseError('success must be a boolean')
    if not isinstance(raw['timestamp'], str):
        raise TelemetryParseError('timestamp must be a string')
    if not isinstance(raw['event'], str) or not raw['event']:
        raise TelemetryParseError('event must be a non-empty string')
    for field in V2_OBJECT_FIELDS:
        if raw.get(field) is not None and not isinstance(raw[field], dict):
            raise TelemetryParseError(f'{field} must be an object if present')

    return _build_event(
        area=raw['area'],
        event=raw['event'],
        success=raw['success'],
        timestamp=raw['timestamp'],
        schema_version=SchemaVersion.V2,
        server=raw.get('server') or None,
        client=raw.get('client') or None,
        session=raw.get('session') or None,
        user=raw.get('user') or None,
        data=raw.get('data') or {},
    )


def parse(raw: Any) -> TelemetryEvent:
    """
    Dispatches on the detected wire version and returns the canonical event.
    Raises TelemetryParseError for anything that cannot be normalised.
    """
    if not isinstance(raw, dict):
        raise TelemetryParseError('Cannot parse a payload that is not an object')

    schema_version = detect_schema_version(raw)
    if schema_version == SchemaVersion.V1:
        return parse_v1(raw)
    if schema_version == SchemaVersion.V2:
        return parse_v2(raw)
    raise TelemetryParseError(
        f'Unsupported or invalid telemetry schema. Detected version: {schema_version}. Event: {_truncated(raw)}...'
    )
