import datetime
from typing import Any, Callable, Dict, Optional

import pytest

from telemetry_server.app.events.domains import EventRead
from telemetry_server.app.telemetry import parser
from telemetry_server.app.telemetry.domains import TelemetryEvent

DEFAULT_TIMESTAMP = datetime.datetime(2024, 3, 10, 12, 0, 0)


def iso(moment: datetime.datetime) -> str:
    return moment.isoformat(timespec='milliseconds') + 'Z'


def build_v2_payload(
    area: str = 'tool',
    event: str = 'execution',
    success: bool = True,
    timestamp: datetime.datetime | str = DEFAULT_TIMESTAMP,
    server_id: Optional[str] = 's1',
    session_id: Optional[str] = None,
    user_id: Optional[str] = 'u1',
    user_name: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        'schemaVersion': 2,
        'area': area,
        'event': event,
        'success': success,
        'timestamp': timestamp if isinstance(timestamp, str) else iso(timestamp),
        'data': data or {},
    }
    if server_id:
        payload['server'] = {'id': server_id, 'version': '1.0.0'}
    if session_id:
        payload['session'] = {'id': session_id}
    if user_id or user_name:
        payload['user'] = {key: value for key, value in (('id', user_id), ('name', user_name)) if value}
    return payload


def build_event(**kwargs: Any) -> TelemetryEvent:
    event = parser.parse(build_v2_payload(**kwargs))
    event.received_at = event.occurred_at
    return event


@pytest.fixture
def event_factory() -> Callable[..., EventRead]:
    """
    Parses and stores a v2 event in the active session
        def test_something(event_factory):
            stored = event_factory(area='session', event='session_start', session_id='A')
    """
    from telemetry_server.app.events.service import EventService

    def _store(**kwargs: Any) -> EventRead:
        return EventService.store_event(build_event(**kwargs))

    return _store
