from telemetry_server.app.telemetry.service import passes_identity_gate
from tests.factories.telemetry import build_event


def test_user_id_passes():
    assert passes_identity_gate(build_event(user_id='u1')) is True


def test_user_name_only_passes():
    assert passes_identity_gate(build_event(user_id=None, data={'userName': 'Ada'})) is True


def test_anonymous_tool_event_is_gated():
    assert passes_identity_gate(build_event(user_id=None)) is False


def test_opt_out():
    assert passes_identity_gate(build_event(user_id=None, data={'allowMissingUser': True})) is True
    assert passes_identity_gate(build_event(user_id=None, data={'allowMissingUser': 'true'})) is False


def test_boot_and_connect_are_exempt():
    assert passes_identity_gate(build_event(area='session', event='server_boot', user_id=None)) is True
    assert passes_identity_gate(build_event(area='session', event='client_connect', user_id=None)) is True


def test_session_start_needs_a_user():
    assert passes_identity_gate(build_event(area='session', event='session_start', user_id=None)) is False


def test_other_session_events_are_exempt():
    assert passes_identity_gate(build_event(area='session', event='session_end', user_id=None)) is True
