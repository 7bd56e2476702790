"""
Structural validation of inbound telemetry payloads.

The payload model is built once at import. Unknown top level members are
ignored and `data` is free form.
"""

from typing import Any, Dict, List, Optional, Tuple

from humps import camelize  # type: ignore[attr-defined]
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from telemetry_server import settings
from telemetry_server.app.telemetry.constants import ERROR_EVENT_NAMES
from telemetry_server.app.telemetry.domains import FieldError


class TelemetryPayloadSchema(BaseModel):
    model_config = ConfigDict(
        extra='ignore',
        strict=True,
        alias_generator=camelize,
        populate_by_name=False,
    )

    event: str = Field(min_length=1)
    timestamp: str = Field(min_length=1)
    schema_version: Optional[int] = None

    # v2 members
    area: Optional[str] = None
    success: Optional[bool] = None
    server: Optional[Dict[str, Any]] = None
    client: Optional[Dict[str, Any]] = None
    session: Optional[Dict[str, Any]] = None
    user: Optional[Dict[str, Any]] = None

    # v1 members
    server_id: Optional[str] = None
    version: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None

    data: Optional[Dict[str, Any]] = None


def _field_name(location: Tuple[Any, ...]) -> str:
    if not location:
        return 'root'
    return '.'.join(str(part) for part in location)


def _is_error_event(payload: Dict[str, Any]) -> bool:
    return payload.get('event') in ERROR_EVENT_NAMES


def validate(payload: Any, all_errors: Optional[bool] = None) -> Tuple[bool, List[FieldError]]:
    """
    Returns (ok, errors). Outside of REST_DEBUG only the first error is reported.
    """
    if all_errors is None:
        all_errors = settings.REST_DEBUG

    if not isinstance(payload, dict):
        return False, [FieldError(field='root', message='must be object')]

    if _is_error_event(payload):
        # Error reports are accepted with the bare minimum, the parser checks the rest
        if payload.get('event') and payload.get('timestamp'):
            return True, []
        return False, [FieldError(field='event|timestamp', message='Error events must include event type and timestamp')]

    try:
        TelemetryPayloadSchema.model_validate(payload)
    except ValidationError as exc:
        errors = [FieldError(field=_field_name(error['loc']), message=error['msg']) for error in exc.errors()]
        return False, errors if all_errors else errors[:1]

    return True, []
