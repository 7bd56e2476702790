import datetime
from typing import Any, Dict

from humps import camelize  # type: ignore[attr-defined]
from pydantic import BaseModel, ConfigDict, SerializerFunctionWrapHandler, field_serializer

from telemetry_server.common.utils import isoformat_utc

_SHARED_CONFIG: Dict[str, Any] = dict(
    extra='forbid',
    use_enum_values=True,
    from_attributes=True,
    populate_by_name=True,
)


class BaseDomain(BaseModel):
    """
    Fields are snake_case in Python and camelCase on the wire. Both spellings
    are accepted on input.
    """

    model_config = ConfigDict(alias_generator=camelize, **_SHARED_CONFIG)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)


class RowDomain(BaseDomain):
    """
    Stored events and sessions keep their column names on the wire, the
    dashboard reads them with snake_case keys
    """

    model_config = ConfigDict(alias_generator=None, **_SHARED_CONFIG)

    # Columns hold naive UTC, the wire carries the Z suffix like every other payload
    @field_serializer('*', mode='wrap', when_used='json')
    def serialize_utc(self, value: Any, handler: SerializerFunctionWrapHandler) -> Any:
        if isinstance(value, datetime.datetime):
            return isoformat_utc(value)
        return handler(value)
