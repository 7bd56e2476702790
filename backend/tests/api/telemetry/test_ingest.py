import json

from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from telemetry_server.network.queue.exceptions import IngestQueueSaturated
from tests.api.utils import count_events, discarded_reasons
from tests.factories.telemetry import build_v2_payload


def test_v2_event_is_accepted_and_stored(client: TestClient):
    response = client.post('/telemetry', json=build_v2_payload(session_id='A', data={'toolName': 'q'}))

    assert response.status_code == 200
    content = response.json()
    assert content['status'] == 'ok'
    assert content['receivedAt'].endswith('Z')

    events = client.get('/api/events').json()['events']
    assert len(events) == 1
    assert events[0]['event'] == 'tool_call'
    assert events[0]['tool_name'] == 'q'
    assert events[0]['parent_session_id'] == 'A'
    assert events[0]['received_at'] is not None


def test_v1_event_is_accepted(client: TestClient):
    response = client.post(
        '/telemetry',
        json={
            'event': 'tool_call',
            'timestamp': '2024-01-01T10:00:00Z',
            'serverId': 's1',
            'sessionId': 'x',
            'userId': 'u1',
            'data': {'toolName': 'q'},
        },
    )
    assert response.status_code == 200
    assert count_events() == 1


def test_invalid_json(client: TestClient):
    response = client.post('/telemetry', content=b'{"event": ', headers={'Content-Type': 'application/json'})

    assert response.status_code == 400
    content = response.json()
    assert content['status'] == 'error'
    assert content['message'].startswith('Invalid JSON')
    assert content['errors'][0]['field'] == 'root'
    assert discarded_reasons() == ['invalid JSON']


def test_payload_must_be_an_object(client: TestClient):
    response = client.post('/telemetry', json=['tool_call'])

    assert response.status_code == 400
    assert response.json() == {
        'status': 'error',
        'message': 'Telemetry payload must be a JSON object',
        'errors': [{'field': 'root', 'message': 'must be object'}],
    }
    assert discarded_reasons() == ['not an object']


def test_schema_failure(client: TestClient):
    response = client.post('/telemetry', json={'timestamp': '2024-01-01T10:00:00Z'})

    assert response.status_code == 400
    content = response.json()
    assert content['message'] == 'Validation failed'
    assert content['errors'] == [{'field': 'event', 'message': 'Field required'}]
    assert discarded_reasons()[0].startswith('schema validation failed')
    assert count_events() == 0


def test_parse_failure(client: TestClient):
    response = client.post('/telemetry', json={'event': 'mystery', 'timestamp': '2024-01-01T10:00:00Z'})

    assert response.status_code == 400
    content = response.json()
    assert content['message'].startswith('Unsupported or invalid telemetry schema')
    assert content['errors'][0]['field'] == 'root'
    assert count_events() == 0


def test_missing_user_is_ignored(client: TestClient):
    response = client.post('/telemetry', json=build_v2_payload(user_id=None))

    assert response.status_code == 202
    content = response.json()
    assert content['status'] == 'ignored'
    assert content['reason'] == 'missing_username'
    assert 'receivedAt' in content
    assert count_events() == 0
    assert discarded_reasons() == ['missing username/userId']


def test_boot_events_need_no_user(client: TestClient):
    response = client.post('/telemetry', json=build_v2_payload(area='session', event='server_boot', user_id=None))
    assert response.status_code == 200
    assert count_events() == 1


def test_saturated_queue_answers_503(client: TestClient, monkeypatch):
    def saturated(*args, **kwargs):
        raise IngestQueueSaturated()

    monkeypatch.setattr('telemetry_server.app.telemetry.service.persist_telemetry_event.send', saturated)
    response = client.post('/telemetry', json=build_v2_payload())

    assert response.status_code == 503
    assert response.json() == {'status': 'error', 'message': 'Telemetry queue is full'}
    assert count_events() == 0
    assert discarded_reasons() == ['queue saturated']


def test_storage_failure_is_invisible_to_the_sender(client: TestClient, monkeypatch):
    def unavailable(event):
        raise SQLAlchemyError('database unavailable')

    monkeypatch.setattr('telemetry_server.app.events.service.EventService.store_event', unavailable)
    response = client.post('/telemetry', json=build_v2_payload())

    assert response.status_code == 200
    assert count_events() == 0


def test_unexpected_failure_answers_500(client: TestClient, monkeypatch):
    def broken(body):
        raise RuntimeError('boom')

    monkeypatch.setattr('telemetry_server.app.telemetry.service.TelemetryIngestService.ingest', broken)
    response = client.post('/telemetry', content=json.dumps(build_v2_payload()))

    assert response.status_code == 500
    assert response.json() == {'status': 'error', 'message': 'Internal server error'}


def test_new_events_invalidate_cached_stats(client: TestClient):
    client.post('/telemetry', json=build_v2_payload())
    assert client.get('/api/stats').json()['total'] == 1

    client.post('/telemetry', json=build_v2_payload(success=False))
    stats = client.get('/api/stats').json()
    assert stats['total'] == 2
    assert stats['byEventType'] == {'tool_call': 1, 'tool_error': 1}
