import datetime
import enum

from telemetry_server.common.enum import BaseEnum


class Area(BaseEnum):
    TOOL = 'tool'
    SESSION = 'session'
    GENERAL = 'general'


class EventType(BaseEnum):
    """
    Legacy event classification, stored in the `event` column
    """

    TOOL_CALL = 'tool_call'
    TOOL_ERROR = 'tool_error'
    SESSION_START = 'session_start'
    SESSION_END = 'session_end'
    ERROR = 'error'
    CUSTOM = 'custom'


class SchemaVersion(enum.IntEnum):
    V1 = 1
    V2 = 2


# Moments within an area that carry special meaning
TOOL_EXECUTION_EVENTS = frozenset({'execution', 'response'})
TOOL_VALIDATION_EVENT = 'validation'
SESSION_START_EVENTS = frozenset({'session_start', 'server_boot', 'client_connect'})
SESSION_END_EVENT = 'session_end'
GENERAL_ERROR_EVENT = 'error_occurred'
GENERAL_CUSTOM_EVENT = 'custom'

# Boot and connect events never carry a user
IDENTITY_EXEMPT_EVENTS = frozenset({'server_boot', 'client_connect'})

# Validator only checks event and timestamp for these
ERROR_EVENT_NAMES = frozenset({EventType.TOOL_ERROR.value, EventType.ERROR.value})

# Two session starts of the same user and server within this window share a logical session
SESSION_STITCH_WINDOW = datetime.timedelta(hours=3)
# A logical session without an end is active while its last event is this recent
ACTIVE_SESSION_THRESHOLD = datetime.timedelta(hours=2)

# user.id values that look like a person rather than an opaque id
USER_ID_NAME_MIN_LENGTH = 20
