#!/usr/bin/env python3
"""
Seed the database with realistic-looking telemetry for dashboard review.

    python -m scripts.seed_data
"""

import json
import random
import uuid
from datetime import datetime, timedelta, timezone

from loguru import logger

from telemetry_server.setup import create_tables
from telemetry_server.setup import run as setup

SERVERS = [
    {'id': 'mcp-salesforce-acme', 'version': '1.4.2', 'company': 'Acme Corp', 'org': '00D5g000004aBcDEAU'},
    {'id': 'mcp-salesforce-globex', 'version': '1.4.0', 'company': 'Globex', 'org': '00D8d000001xYzQEAU'},
    {'id': 'mcp-salesforce-initech', 'version': '1.3.9', 'company': 'Initech', 'org': '00D1a000000pQrSEAU'},
]

USERS = [
    {'id': 'alex.chen@example.com', 'name': 'Alex Chen'},
    {'id': 'sarah.johnson@example.com', 'name': 'Sarah Johnson'},
    {'id': 'marcus.williams@example.com', 'name': 'Marcus Williams'},
    {'id': 'emily.rodriguez@example.com', 'name': 'Emily Rodriguez'},
    {'id': 'david.kim@example.com', 'name': 'David Kim'},
]

TOOLS = ['execute_soql_query', 'describe_object', 'deploy_metadata', 'run_apex_test', 'get_record', 'update_record']

TEAM_MAPPINGS = [
    {'orgIdentifier': '00D5g000004aBcDEAU', 'clientName': 'Acme Corp', 'teamName': 'Platform', 'color': '#2563eb'},
    {'orgIdentifier': '00D8d000001xYzQEAU', 'clientName': 'Globex', 'teamName': 'Platform', 'color': '#2563eb'},
    {'orgIdentifier': '00D1a000000pQrSEAU', 'clientName': 'Initech', 'teamName': 'Integrations', 'color': '#16a34a'},
]


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _payload(area, event, success, moment, server, user, session_id, data):
    return {
        'schemaVersion': 2,
        'area': area,
        'event': event,
        'success': success,
        'timestamp': _iso(moment),
        'server': {'id': server['id'], 'version': server['version']},
        'session': {'id': session_id},
        'user': {'id': user['id'], 'name': user['name']},
        'data': {
            'companyDetails': {'Name': server['company']},
            'state': {'org': {'id': server['org']}},
            **data,
        },
    }


def build_session(start: datetime) -> list[dict]:
    server = random.choice(SERVERS)
    user = random.choice(USERS)
    session_id = str(uuid.uuid4())
    moment = start
    payloads = [_payload('session', 'session_start', True, moment, server, user, session_id, {})]

    for _ in range(random.randint(2, 12)):
        moment += timedelta(seconds=random.randint(5, 600))
        tool = random.choice(TOOLS)
        if random.random() < 0.15:
            data = {'toolName': tool, 'error': {'message': 'INVALID_FIELD: No such column'}}
            payloads.append(_payload('tool', 'execution', False, moment, server, user, session_id, data))
        else:
            data = {'toolName': tool, 'duration': random.randint(40, 4000)}
            payloads.append(_payload('tool', 'execution', True, moment, server, user, session_id, data))

    if random.random() < 0.7:
        moment += timedelta(seconds=random.randint(5, 120))
        payloads.append(_payload('session', 'session_end', True, moment, server, user, session_id, {}))
    return payloads


def seed_data(days: int = 14, sessions_per_day: int = 12):
    """Seed the database with sample data."""
    setup()
    create_tables()

    from telemetry_server.app.events.service import EventService
    from telemetry_server.app.telemetry import parser
    from telemetry_server.network.database import db

    now = datetime.now(timezone.utc)
    stored = 0
    with db(commit_on_success=True):
        for day in range(days):
            for _ in range(sessions_per_day):
                start = now - timedelta(days=day, minutes=random.randint(0, 23 * 60))
                for raw in build_session(start):
                    event = parser.parse(raw)
                    event.received_at = event.occurred_at
                    EventService.store_event(event)
                    stored += 1

        EventService.save_setting('org_team_mappings', json.dumps(TEAM_MAPPINGS))

    logger.info(f'seeded {stored} telemetry events over {days} days')


if __name__ == '__main__':
    seed_data()
