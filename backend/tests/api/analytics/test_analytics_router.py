import json

from fastapi.testclient import TestClient

from telemetry_server.common.utils import utc_now, utc_today


def test_events_listing(client: TestClient, stored_event):
    stored_event(area='session', event='session_start', session_id='A')
    stored_event(session_id='A')
    stored_event(session_id='A', success=False)

    content = client.get('/api/events', params={'limit': 2}).json()
    assert content['total'] == 3
    assert content['limit'] == 2
    assert content['offset'] == 0
    assert content['hasMore'] is True

    content = client.get('/api/events', params=[('eventType', 'tool_call'), ('eventType', 'tool_error')]).json()
    assert content['total'] == 2

    content = client.get('/api/events', params={'area': 'session'}).json()
    assert [event['event'] for event in content['events']] == ['session_start']


def test_invalid_ordering(client: TestClient):
    response = client.get('/api/events', params={'orderBy': 'data'})
    assert response.status_code == 400
    assert response.json()['detail'].startswith('Invalid orderBy')


def test_event_detail(client: TestClient, stored_event):
    event = stored_event(data={'toolName': 'q'})

    content = client.get(f'/api/events/{event.id}').json()
    assert content['status'] == 'ok'
    assert content['event']['id'] == event.id
    assert content['event']['data'] == {'toolName': 'q'}

    response = client.get('/api/events/999999')
    assert response.status_code == 404
    assert response.json() == {'status': 'error', 'message': 'Event not found'}


def test_event_types_and_sessions(client: TestClient, stored_event):
    stored_event(area='session', event='session_start', session_id='A', timestamp=utc_now())
    stored_event(session_id='A', timestamp=utc_now())

    assert client.get('/api/event-types').json() == [
        {'event': 'session_start', 'count': 1},
        {'event': 'tool_call', 'count': 1},
    ]

    sessions = client.get('/api/sessions').json()
    assert len(sessions) == 1
    assert sessions[0]['session_id'] == 'A'
    assert sessions[0]['count'] == 2
    assert sessions[0]['is_active'] is True


def test_daily_stats_by_event_type(client: TestClient, stored_event):
    now = utc_now()
    stored_event(area='session', event='session_start', session_id='A', timestamp=now)
    stored_event(session_id='A', timestamp=now)
    stored_event(session_id='A', success=False, timestamp=now)

    response = client.get('/api/daily-stats', params={'days': 1, 'byEventType': 'true'})
    assert response.json() == [
        {'date': utc_today().isoformat(), 'startSessionsWithoutEnd': 1, 'toolEvents': 2, 'errorEvents': 1}
    ]

    response = client.get('/api/daily-stats', params={'days': 2})
    assert [point['count'] for point in response.json()] == [0, 3]


def test_leaderboards(client: TestClient, stored_event):
    now = utc_now()
    alpha = {'id': 'org-alpha'}
    beta = {'id': 'org-beta'}
    stored_event(user_id='u1', timestamp=now, data={'userName': 'Ada', 'toolName': 'q', 'state': {'org': alpha}})
    stored_event(user_id='u2', timestamp=now, data={'toolName': 'q', 'state': {'org': beta}})

    users = client.get('/api/top-users-today').json()
    assert users['days'] == 3
    assert {user['label'] for user in users['users']} == {'Ada', 'u2'}

    mappings = [{'orgIdentifier': 'org-alpha', 'teamName': 'TeamX', 'clientName': 'Alpha'}]
    teams = client.get('/api/top-teams-today', params={'mappings': json.dumps(mappings)}).json()
    assert [(team['label'], team['eventCount'], team['clientName']) for team in teams['teams']] == [('TeamX', 1, 'Alpha')]

    # Unreadable mappings fall back to the stored ones, of which there are none
    assert client.get('/api/top-teams-today', params={'mappings': '{oops'}).json()['teams'] == []

    tools = client.get('/api/tool-usage-stats').json()
    assert tools['tools'] == [{'tool': 'q', 'total': 2, 'successful': 2, 'errors': 0}]


def test_telemetry_users(client: TestClient, stored_event):
    stored_event(user_id='u1', user_name='Ada')
    users = client.get('/api/telemetry-users').json()
    assert [(user['id'], user['label'], user['eventCount']) for user in users] == [('u1', 'Ada', 1)]


def test_export_logs(client: TestClient, stored_event):
    stored_event()
    stored_event(success=False)

    response = client.get('/api/export/logs', params={'eventType': 'tool_error'})
    assert response.status_code == 200
    assert response.headers['content-type'].startswith('application/x-ndjson')
    assert response.headers['content-disposition'].startswith('attachment; filename="telemetry-logs-')
    lines = response.text.splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])['event'] == 'tool_error'


def test_database_size(client: TestClient):
    content = client.get('/api/database-size').json()
    assert content['status'] == 'ok'
    assert content['size'] > 0
    assert content['maxSize'] == 1024**3
    assert content['maxSizeFormatted'] == '1 GB'
    assert content['displayText'].endswith(f"({content['percentage']}%)")
