"""
Derivation of the denormalised event columns.

Every function here is total: malformed or missing data yields None.
"""

from typing import Any, Dict, Optional

from telemetry_server.app.telemetry.constants import (
    GENERAL_ERROR_EVENT,
    SESSION_END_EVENT,
    SESSION_START_EVENTS,
    TOOL_EXECUTION_EVENTS,
    TOOL_VALIDATION_EVENT,
    USER_ID_NAME_MIN_LENGTH,
    Area,
    EventType,
)
from telemetry_server.app.telemetry.domains import DerivedFields


def clean_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def get_path(data: Any, *path: str) -> Any:
    """
    Walks nested dicts, None as soon as a step is missing or not a dict
    """
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_string(data: Any, *paths: tuple[str, ...]) -> Optional[str]:
    for path in paths:
        value = clean_string(get_path(data, *path))
        if value:
            return value
    return None


def calculate_event_type(area: str, event: str, success: bool) -> str:
    if area == Area.TOOL:
        if event in TOOL_EXECUTION_EVENTS:
            return EventType.TOOL_CALL.value if success else EventType.TOOL_ERROR.value
        if event == TOOL_VALIDATION_EVENT:
            return EventType.TOOL_ERROR.value
    elif area == Area.SESSION:
        if event in SESSION_START_EVENTS:
            return EventType.SESSION_START.value
        if event == SESSION_END_EVENT:
            return EventType.SESSION_END.value
    elif area == Area.GENERAL and event == GENERAL_ERROR_EVENT:
        return EventType.ERROR.value
    return EventType.CUSTOM.value


def extract_org_id(data: Any) -> Optional[str]:
    return first_string(data, ('state', 'org', 'id'), ('orgId',))


def extract_display_name(data: Any) -> Optional[str]:
    """
    Name explicitly reported in the event data
    """
    return first_string(data, ('userName',), ('user_name',), ('user', 'name'))


def looks_like_name(user_id: str) -> bool:
    return ' ' in user_id or '@' in user_id or len(user_id) > USER_ID_NAME_MIN_LENGTH


def extract_user_name(user: Optional[Dict[str, Any]], data: Any) -> Optional[str]:
    explicit = clean_string(get_path(user, 'name')) or extract_display_name(data)
    if explicit:
        return explicit

    user_id = clean_string(get_path(user, 'id'))
    if user_id and looks_like_name(user_id):
        return user_id
    return None


def extract_tool_name(data: Any) -> Optional[str]:
    return first_string(data, ('toolName',), ('tool',), ('error', 'toolName'), ('error', 'tool'))


def extract_company_name(data: Any) -> Optional[str]:
    return first_string(data, ('state', 'org', 'companyDetails', 'Name'), ('companyDetails', 'Name'))


def extract_error_message(data: Any) -> Optional[str]:
    return first_string(data, ('errorMessage',), ('error', 'message'))


def normalize_user_id_from_data(data: Any) -> Optional[str]:
    """
    Best effort identifier for events whose user was only reported inside data
    """
    for path in (('userId',), ('user_id',), ('user', 'id'), ('user', 'userId'), ('user', 'user_id')):
        identifier = get_path(data, *path)
        if isinstance(identifier, (int, float)) and not isinstance(identifier, bool):
            return str(identifier)
        cleaned = clean_string(identifier)
        if cleaned:
            return cleaned
    return extract_display_name(data)


def build_user_label(user_id: Optional[str], data: Any) -> str:
    return extract_display_name(data) or normalize_user_id_from_data(data) or clean_string(user_id) or 'Unknown user'


def derive_fields(
    area: str,
    event: str,
    success: bool,
    user: Optional[Dict[str, Any]],
    data: Any,
) -> DerivedFields:
    return DerivedFields(
        event_type=calculate_event_type(area, event, success),
        org_id=extract_org_id(data),
        user_name=extract_user_name(user, data),
        tool_name=extract_tool_name(data),
        company_name=extract_company_name(data),
        error_message=extract_error_message(data),
    )
