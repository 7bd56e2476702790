import datetime
import json

import pytest

from telemetry_server.app.analytics.domains import EventFilters
from telemetry_server.app.analytics.service import NO_USERS_SENTINEL, AnalyticsService
from telemetry_server.app.events.service import EventService
from telemetry_server.common.exceptions import APIException

T = datetime.datetime(2024, 3, 10, 10, 0, 0)


def minutes(value):
    return datetime.timedelta(minutes=value)


class TestListEvents:
    @pytest.fixture
    def events(self, event_factory):
        return [
            event_factory(area='session', event='session_start', session_id='A', timestamp=T),
            event_factory(session_id='A', timestamp=T + minutes(1), data={'toolName': 'q'}),
            event_factory(session_id='A', success=False, timestamp=T + minutes(2), data={'toolName': 'q'}),
            event_factory(area='general', event='error_occurred', user_id='u2', timestamp=T + minutes(3)),
        ]

    def test_unfiltered_page(self, events):
        page = AnalyticsService.list_events(EventFilters(), limit=2)
        assert page.total == 4
        assert len(page.events) == 2
        assert page.has_more is True
        assert [event.id for event in page.events] == [events[3].id, events[2].id]

    def test_order_by_timestamp_ascending(self, events):
        page = AnalyticsService.list_events(EventFilters(), order_by='timestamp', order='asc')
        assert [event.id for event in page.events] == [event.id for event in events]

    def test_event_type_filter(self, events):
        page = AnalyticsService.list_events(EventFilters(event_types=['tool_call', 'tool_error']))
        assert page.total == 2

    def test_area_wins_over_event_type(self, events):
        page = AnalyticsService.list_events(EventFilters(areas=['general'], event_types=['tool_call']))
        assert [event.event for event in page.events] == ['error']

    def test_session_and_user_filters(self, events):
        assert AnalyticsService.list_events(EventFilters(session_id='A')).total == 3
        assert AnalyticsService.list_events(EventFilters(user_ids=['u2'])).total == 1

    def test_no_users_sentinel(self, events):
        page = AnalyticsService.list_events(EventFilters(user_ids=[NO_USERS_SENTINEL]))
        assert page.total == 0
        assert page.events == []

    def test_deep_pages_skip_the_count(self, events):
        page = AnalyticsService.list_events(EventFilters(), limit=500, offset=1)
        assert page.total is None
        assert len(page.events) == 3
        assert page.has_more is False

    def test_created_at_window(self, events):
        assert AnalyticsService.list_events(EventFilters(start_date='2000-01-01T00:00:00Z')).total == 4
        assert AnalyticsService.list_events(EventFilters(end_date='2000-01-01T00:00:00Z')).total == 0

    def test_deleted_events_are_hidden(self, events):
        EventService.soft_delete_event(events[0].id)
        assert AnalyticsService.list_events(EventFilters()).total == 3

    @pytest.mark.parametrize(
        'kwargs',
        [{'order_by': 'data'}, {'order': 'sideways'}],
    )
    def test_invalid_ordering(self, kwargs):
        with pytest.raises(APIException):
            AnalyticsService.list_events(EventFilters(), **kwargs)

    def test_invalid_date(self):
        with pytest.raises(APIException, match='Invalid startDate'):
            AnalyticsService.list_events(EventFilters(start_date='not a date'))


class TestCounts:
    def test_event_type_stats(self, event_factory):
        event_factory()
        event_factory()
        event_factory(success=False)
        event_factory(area='session', event='session_start', session_id='A')

        counts = [(row.event, row.count) for row in AnalyticsService.get_event_type_stats()]
        assert counts == [('tool_call', 2), ('session_start', 1), ('tool_error', 1)]

        assert AnalyticsService.get_event_type_stats(user_ids=[NO_USERS_SENTINEL]) == []
        assert [row.event for row in AnalyticsService.get_event_type_stats(session_id='A')] == ['session_start']

    def test_stats(self, event_factory):
        event_factory()
        event_factory(success=False)
        event_factory(success=False)

        stats = AnalyticsService.get_stats()
        assert stats.total == 3
        assert stats.by_event_type == {'tool_call': 1, 'tool_error': 2}
        assert AnalyticsService.get_stats(event_type='tool_call').total == 1


class TestSessions:
    @pytest.fixture
    def sessions(self, event_factory):
        event_factory(area='session', event='session_start', session_id='A', timestamp=T, data={'userName': 'Ada'})
        event_factory(session_id='A', timestamp=T + minutes(5))
        event_factory(area='session', event='session_start', session_id='B', timestamp=T + minutes(120))
        event_factory(area='session', event='session_start', session_id='C', user_id='u2', timestamp=T + minutes(60))
        event_factory(area='session', event='session_end', session_id='C', user_id='u2', timestamp=T + minutes(90))

    def test_logical_sessions(self, sessions):
        summaries = AnalyticsService.list_sessions(as_of=T + minutes(180))
        assert [summary.session_id for summary in summaries] == ['A', 'C']

        stitched, ended = summaries
        assert stitched.count == 3
        assert stitched.first_event == '2024-03-10T10:00:00.000Z'
        assert stitched.last_event == '2024-03-10T12:00:00.000Z'
        assert stitched.user_id == 'u1'
        assert stitched.user_name == 'Ada'
        assert stitched.is_active is True

        assert ended.count == 2
        assert ended.user_id == 'u2'
        assert ended.is_active is False

    def test_sessions_go_inactive(self, sessions):
        summaries = AnalyticsService.list_sessions(as_of=T + minutes(241))
        assert all(summary.is_active is False for summary in summaries)

    def test_user_filter_and_paging(self, sessions):
        assert [summary.session_id for summary in AnalyticsService.list_sessions(user_id='u2', as_of=T)] == ['C']
        assert [summary.session_id for summary in AnalyticsService.list_sessions(limit=1, offset=1, as_of=T)] == ['C']

    def test_pseudo_sessions(self, sessions, event_factory):
        event_factory(timestamp=T + minutes(360))
        event_factory(timestamp=T + minutes(361))

        without = AnalyticsService.list_sessions(as_of=T)
        assert [summary.session_id for summary in without] == ['A', 'C']

        summaries = AnalyticsService.list_sessions(include_users_without_sessions=True, as_of=T)
        assert [summary.session_id for summary in summaries] == ['user_u1_2024-03-10', 'A', 'C']
        assert summaries[0].count == 2
        assert summaries[0].is_active is False


class TestDailyStats:
    def test_utc_day_boundaries(self, event_factory):
        event_factory(timestamp='2024-03-10T23:59:59.999Z')
        event_factory(timestamp='2024-03-11T00:00:00.000Z')
        # Local offsets are folded into UTC before bucketing
        event_factory(timestamp='2024-03-11T01:30:00.000+02:00')

        series = AnalyticsService.get_daily_stats(days=3, as_of=datetime.datetime(2024, 3, 11, 12, 0))
        assert [point.to_json_dict() for point in series] == [
            {'date': '2024-03-09', 'count': 0},
            {'date': '2024-03-10', 'count': 2},
            {'date': '2024-03-11', 'count': 1},
        ]

    def test_by_event_type(self, event_factory):
        day = datetime.datetime(2024, 3, 10)
        event_factory(area='session', event='session_start', session_id='A', timestamp=day + minutes(60))
        event_factory(session_id='A', timestamp=day + minutes(61))
        event_factory(session_id='A', success=False, timestamp=day + minutes(62))

        series = AnalyticsService.get_daily_stats_by_event_type(days=1, as_of=day + minutes(600))
        assert [point.to_json_dict() for point in series] == [
            {'date': '2024-03-10', 'startSessionsWithoutEnd': 1, 'toolEvents': 2, 'errorEvents': 1}
        ]

    def test_days_are_clamped(self):
        assert len(AnalyticsService.get_daily_stats(days=0, as_of=T)) == 1
        assert len(AnalyticsService.get_daily_stats(days=1000, as_of=T)) == 365


class TestLeaderboards:
    def test_top_users(self, event_factory):
        event_factory(user_id='u1', timestamp=T)
        event_factory(user_id='u1', timestamp=T + minutes(1), data={'userName': 'Ada'})
        event_factory(user_id='u1', timestamp=T + minutes(2))
        event_factory(user_id='u3', timestamp=T)
        event_factory(user_id='u3', timestamp=T)
        event_factory(user_id='u2', timestamp=T)

        result = AnalyticsService.get_top_users(limit=2, days=1)
        assert result.days == 1
        assert [(user.id, user.event_count) for user in result.users] == [('u1', 3), ('u3', 2)]
        # Label comes from the latest event, which carries no name
        assert result.users[0].label == 'u1'

    def test_top_users_label(self, event_factory):
        event_factory(user_id='u1', timestamp=T, data={'userName': 'Ada'})
        assert AnalyticsService.get_top_users().users[0].label == 'Ada'

    def test_top_teams_fold(self, event_factory):
        for org_id, count in (('org-alpha', 5), ('org-alpha-prod', 3), ('org-beta', 10)):
            for _ in range(count):
                event_factory(data={'state': {'org': {'id': org_id}}})

        mappings = AnalyticsService.resolve_team_mappings(
            [
                {'orgIdentifier': 'org-alpha', 'teamName': 'TeamX', 'clientName': 'Alpha', 'color': '#f00'},
                {'orgIdentifier': 'ORG-ALPHA-PROD', 'teamName': 'teamx', 'clientName': 'Alpha Prod'},
                {'orgIdentifier': 'org-beta', 'teamName': 'TeamY', 'active': False},
                'not a mapping',
            ]
        )
        result = AnalyticsService.get_top_teams(mappings)

        assert len(result.teams) == 1
        team = result.teams[0]
        assert team.label == 'TeamX'
        assert team.event_count == 8
        assert team.client_name == 'Alpha · Alpha Prod'
        assert team.orgs == ['Alpha', 'Alpha Prod']
        assert team.color == '#f00'

    def test_team_mappings_fall_back_to_the_stored_setting(self):
        EventService.save_setting('org_team_mappings', json.dumps([{'orgIdentifier': 'o1', 'teamName': 'T'}]))
        mappings = AnalyticsService.resolve_team_mappings(None)
        assert [(mapping.org_identifier, mapping.team_name) for mapping in mappings] == [('o1', 'T')]

    def test_no_mappings_no_teams(self, event_factory):
        event_factory(data={'state': {'org': {'id': 'org-alpha'}}})
        assert AnalyticsService.get_top_teams([]).teams == []

    def test_tool_usage(self, event_factory):
        event_factory(timestamp=T, data={'toolName': 'query'})
        event_factory(timestamp=T, data={'toolName': 'query'})
        event_factory(timestamp=T, success=False, data={'toolName': 'query'})
        event_factory(timestamp=T, data={'toolName': 'describe'})
        event_factory(area='session', event='session_start', session_id='A', timestamp=T, data={'toolName': 'x'})
        # Outside the window
        event_factory(timestamp=T - datetime.timedelta(days=10), data={'toolName': 'old'})

        result = AnalyticsService.get_tool_usage_stats(days=7, as_of=T)
        assert [tool.to_json_dict() for tool in result.tools] == [
            {'tool': 'query', 'total': 3, 'successful': 2, 'errors': 1},
            {'tool': 'describe', 'total': 1, 'successful': 1, 'errors': 0},
        ]


def test_telemetry_users(event_factory):
    event_factory(user_id='u1', user_name='Ada', timestamp=T)
    event_factory(user_id='u2', timestamp=T + minutes(10))
    event_factory(user_id='u2', timestamp=T + minutes(11))

    users = AnalyticsService.list_telemetry_users()
    assert [(user.id, user.label, user.event_count) for user in users] == [('u2', 'u2', 2), ('u1', 'Ada', 1)]
    assert users[0].last_event == '2024-03-10T10:11:00.000Z'

    assert [user.id for user in AnalyticsService.list_telemetry_users(limit=1, offset=1)] == ['u1']


def test_export_events(event_factory):
    stored = event_factory(session_id='A', timestamp=T, data={'toolName': 'q'})
    event_factory(server_id='s2', timestamp=T)

    lines = AnalyticsService.export_events(EventFilters(server_id='s1')).splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record['@timestamp'] == '2024-03-10T10:00:00.000Z'
    assert record['@version'] == '1'
    assert record['event'] == 'tool_call'
    assert record['message'] == 'Telemetry event: tool_call'
    assert record['fields']['id'] == stored.id
    assert record['fields']['sessionId'] == 'A'
    assert record['data'] == {'toolName': 'q'}


def test_database_size():
    size = AnalyticsService.get_database_size()
    assert size.size > 0
    assert size.max_size_formatted == '1 GB'
    assert size.display_text == f'{size.size_formatted} / 1 GB ({size.percentage}%)'


def _team_labels():
    mappings = AnalyticsService.resolve_team_mappings(
        [
            {'orgIdentifier': 'org-kept', 'teamName': 'Kept', 'clientName': 'k'},
            {'orgIdentifier': 'org-gone', 'teamName': 'Gone', 'clientName': 'g'},
        ]
    )
    return [team.label for team in AnalyticsService.get_top_teams(mappings).teams]


@pytest.mark.parametrize(
    'read, expected',
    [
        (lambda: [s.session_id for s in AnalyticsService.list_sessions(as_of=T)], ['K']),
        (lambda: [(row.event, row.count) for row in AnalyticsService.get_event_type_stats()], [('tool_call', 1)]),
        (lambda: [p.count for p in AnalyticsService.get_daily_stats(days=1, as_of=T + minutes(60))], [1]),
        (
            lambda: [
                (p.tool_events, p.error_events)
                for p in AnalyticsService.get_daily_stats_by_event_type(days=1, as_of=T + minutes(60))
            ],
            [(1, 0)],
        ),
        (lambda: [user.id for user in AnalyticsService.get_top_users().users], ['u-kept']),
        (_team_labels, ['Kept']),
        (lambda: [tool.tool for tool in AnalyticsService.get_tool_usage_stats(days=7, as_of=T).tools], ['kept_tool']),
    ],
    ids=['sessions', 'event-types', 'daily', 'daily-by-type', 'top-users', 'top-teams', 'tool-usage'],
)
def test_trashed_events_never_reach_reads(event_factory, read, expected):
    event_factory(
        session_id='K',
        user_id='u-kept',
        timestamp=T,
        data={'toolName': 'kept_tool', 'state': {'org': {'id': 'org-kept'}}},
    )
    trashed = event_factory(
        session_id='G',
        user_id='u-gone',
        success=False,
        timestamp=T,
        data={'toolName': 'gone_tool', 'state': {'org': {'id': 'org-gone'}}},
    )
    assert EventService.soft_delete_event(trashed.id) is True

    assert read() == expected


def test_wrongly_typed_team_mappings_are_skipped():
    mappings = AnalyticsService.resolve_team_mappings(
        [
            {'orgIdentifier': 123, 'teamName': 'TeamX', 'clientName': 'c'},
            {'orgIdentifier': 'org-1', 'teamName': ['not', 'a', 'name']},
            {'orgIdentifier': 'org-2', 'teamName': 'TeamY'},
        ]
    )
    assert [(mapping.org_identifier, mapping.team_name) for mapping in mappings] == [('org-2', 'TeamY')]
