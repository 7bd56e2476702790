from typing import List

from telemetry_server.app.telemetry.domains import FieldError
from telemetry_server.common.exceptions import APIException


class TelemetryValidationError(APIException):
    default_detail = 'Validation failed'
    default_code = 'validation_failed'

    def __init__(self, errors: List[FieldError]):
        self.errors = errors
        super().__init__(self.default_detail)

    @property
    def reason(self) -> str:
        summary = '; '.join(f'{error.field}: {error.message}' for error in self.errors)
        return f'schema validation failed ({summary})'


class TelemetryParseError(APIException):
    """
    Payload passed the schema but its fields are inconsistent
    """

    default_detail = 'Unable to parse telemetry event'
    default_code = 'parse_failed'
