import pytest

from telemetry_server.app.telemetry.extractors import (
    build_user_label,
    calculate_event_type,
    derive_fields,
    extract_company_name,
    extract_error_message,
    extract_org_id,
    extract_tool_name,
    extract_user_name,
    get_path,
    normalize_user_id_from_data,
)


@pytest.mark.parametrize(
    'area, event, success, expected',
    [
        ('tool', 'execution', True, 'tool_call'),
        ('tool', 'response', True, 'tool_call'),
        ('tool', 'execution', False, 'tool_error'),
        ('tool', 'response', False, 'tool_error'),
        ('tool', 'validation', True, 'tool_error'),
        ('tool', 'validation', False, 'tool_error'),
        ('tool', 'something_else', True, 'custom'),
        ('session', 'session_start', True, 'session_start'),
        ('session', 'server_boot', True, 'session_start'),
        ('session', 'client_connect', False, 'session_start'),
        ('session', 'session_end', True, 'session_end'),
        ('session', 'heartbeat', True, 'custom'),
        ('general', 'error_occurred', True, 'error'),
        ('general', 'custom', False, 'custom'),
        ('general', 'session_start', True, 'custom'),
    ],
)
def test_calculate_event_type(area, event, success, expected):
    assert calculate_event_type(area, event, success) == expected


class TestPathLookups:
    def test_get_path_stops_at_non_dict(self):
        assert get_path({'state': 'not-a-dict'}, 'state', 'org', 'id') is None
        assert get_path(None, 'anything') is None
        assert get_path({'a': {'b': 1}}, 'a', 'b') == 1

    def test_org_id_prefers_state(self):
        data = {'state': {'org': {'id': 'org-1'}}, 'orgId': 'org-2'}
        assert extract_org_id(data) == 'org-1'
        assert extract_org_id({'orgId': 'org-2'}) == 'org-2'

    def test_malformed_shapes_yield_none(self):
        data = {'state': ['org'], 'toolName': 42, 'error': 'boom', 'companyDetails': None}
        assert extract_org_id(data) is None
        assert extract_tool_name(data) is None
        assert extract_error_message(data) is None
        assert extract_company_name(data) is None

    def test_blank_strings_are_skipped(self):
        assert extract_tool_name({'toolName': '   ', 'tool': 'query'}) == 'query'

    def test_tool_name_from_error(self):
        assert extract_tool_name({'error': {'toolName': 'deploy'}}) == 'deploy'

    def test_company_name(self):
        assert extract_company_name({'state': {'org': {'companyDetails': {'Name': 'Acme'}}}}) == 'Acme'
        assert extract_company_name({'companyDetails': {'Name': 'Globex'}}) == 'Globex'

    def test_error_message(self):
        assert extract_error_message({'errorMessage': 'top level', 'error': {'message': 'nested'}}) == 'top level'
        assert extract_error_message({'error': {'message': 'nested'}}) == 'nested'


class TestUserName:
    def test_user_name_wins(self):
        assert extract_user_name({'id': 'u1', 'name': 'Ada'}, {'userName': 'Other'}) == 'Ada'

    def test_falls_back_to_data(self):
        assert extract_user_name({'id': 'u1'}, {'userName': 'Ada'}) == 'Ada'
        assert extract_user_name({'id': 'u1'}, {'user_name': 'Grace'}) == 'Grace'
        assert extract_user_name({'id': 'u1'}, {'user': {'name': 'Linus'}}) == 'Linus'

    @pytest.mark.parametrize(
        'user_id, expected',
        [
            ('ada@example.com', 'ada@example.com'),
            ('Ada Lovelace', 'Ada Lovelace'),
            ('a-very-long-identifier-value', 'a-very-long-identifier-value'),
            ('u1', None),
            ('12345678901234567890', None),
        ],
    )
    def test_user_id_heuristic(self, user_id, expected):
        assert extract_user_name({'id': user_id}, {}) == expected

    def test_no_user(self):
        assert extract_user_name(None, {}) is None


class TestUserLabel:
    def test_display_name_first(self):
        assert build_user_label('u1', {'userName': 'Ada', 'userId': 'ignored'}) == 'Ada'

    def test_numeric_user_id_in_data(self):
        assert normalize_user_id_from_data({'userId': 42}) == '42'
        assert build_user_label('u1', {'userId': 42}) == '42'

    def test_falls_back_to_user_id(self):
        assert build_user_label('u1', {}) == 'u1'
        assert build_user_label('u1', None) == 'u1'

    def test_unknown(self):
        assert build_user_label(None, {}) == 'Unknown user'


def test_derive_fields():
    derived = derive_fields(
        'tool',
        'execution',
        False,
        {'id': 'u1', 'name': 'Ada'},
        {
            'toolName': 'execute_soql_query',
            'state': {'org': {'id': 'org-1', 'companyDetails': {'Name': 'Acme'}}},
            'error': {'message': 'INVALID_FIELD'},
        },
    )
    assert derived.event_type == 'tool_error'
    assert derived.org_id == 'org-1'
    assert derived.user_name == 'Ada'
    assert derived.tool_name == 'execute_soql_query'
    assert derived.company_name == 'Acme'
    assert derived.error_message == 'INVALID_FIELD'
