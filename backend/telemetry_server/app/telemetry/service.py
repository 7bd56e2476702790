"""
Ingestion pipeline for POST /telemetry.

The request only validates, normalises and enqueues. Stitching and storage
happen on the persistence queue after the response is sent.
"""

import json
from typing import Any, Dict, List, Optional

from fastapi import status
from loguru import logger

from telemetry_server.app.events.discard import DiscardLog
from telemetry_server.app.telemetry import parser, schema
from telemetry_server.app.telemetry.constants import (
    IDENTITY_EXEMPT_EVENTS,
    SESSION_START_EVENTS,
    Area,
)
from telemetry_server.app.telemetry.domains import FieldError, IngestResponse, TelemetryEvent
from telemetry_server.app.telemetry.exceptions import TelemetryParseError, TelemetryValidationError
from telemetry_server.app.telemetry.tasks import persist_telemetry_event
from telemetry_server.common.utils import isoformat_utc, utc_now
from telemetry_server.network.queue.exceptions import IngestQueueSaturated

MISSING_USERNAME_REASON = 'missing_username'


class IngestOutcome:
    """Status code and JSON body answered to the sender"""

    def __init__(self, status_code: int, content: Dict[str, Any]):
        self.status_code = status_code
        self.content = content

    def __repr__(self) -> str:
        return f'IngestOutcome({self.status_code}, {self.content!r})'


def _error_outcome(status_code: int, message: str, errors: Optional[List[FieldError]] = None) -> IngestOutcome:
    content: Dict[str, Any] = {'status': 'error', 'message': message}
    if errors is not None:
        content['errors'] = [error.to_json_dict() for error in errors]
    return IngestOutcome(status_code, content)


def _response(status_code: int, response: IngestResponse) -> IngestOutcome:
    return IngestOutcome(status_code, response.model_dump(by_alias=True, exclude_none=True))


def passes_identity_gate(event: TelemetryEvent) -> bool:
    """
    Events must name a user unless they opted out, are session bookkeeping
    other than a start, or come from boot and connect.
    """
    if event.user_id or event.user_name:
        return True
    if event.allow_missing_user:
        return True
    if event.event in IDENTITY_EXEMPT_EVENTS:
        return True
    if event.area == Area.SESSION and event.event not in SESSION_START_EVENTS:
        return True
    return False


class TelemetryIngestService:
    @staticmethod
    def decode_body(body: bytes) -> Any:
        """
        Raises TelemetryParseError when the body is not JSON
        """
        try:
            return json.loads(body)
        except (UnicodeDecodeError, ValueError) as exc:
            raise TelemetryParseError(f'Invalid JSON: {exc}') from exc

    @staticmethod
    def ingest(body: bytes) -> IngestOutcome:
        try:
            raw = TelemetryIngestService.decode_body(body)
        except TelemetryParseError as exc:
            DiscardLog.record(body, 'invalid JSON')
            return _error_outcome(exc.code, exc.message, [FieldError(field='root', message=exc.message)])
        return TelemetryIngestService.ingest_payload(raw)

    @staticmethod
    def ingest_payload(raw: Any) -> IngestOutcome:
        """
        Runs validation, parsing and the identity gate, then enqueues the
        event for persistence. Every rejection is recorded in the discard log.
        """
        if not isinstance(raw, dict):
            DiscardLog.record(raw, 'not an object')
            return _error_outcome(
                status.HTTP_400_BAD_REQUEST,
                'Telemetry payload must be a JSON object',
                [FieldError(field='root', message='must be object')],
            )

        try:
            event = TelemetryIngestService.validate_and_parse(raw)
        except TelemetryValidationError as exc:
            logger.warning('telemetry payload rejected', reason=exc.reason)
            DiscardLog.record(raw, exc.reason)
            return _error_outcome(exc.code, exc.message, exc.errors)
        except TelemetryParseError as exc:
            logger.warning('telemetry payload rejected', reason=exc.message)
            DiscardLog.record(raw, exc.message)
            return _error_outcome(exc.code, exc.message, [FieldError(field='root', message=exc.message)])

        received_at = utc_now()
        event.received_at = received_at
        received_at_iso = isoformat_utc(received_at)

        if not passes_identity_gate(event):
            DiscardLog.record(raw, 'missing username/userId', received_at=received_at)
            return _response(
                status.HTTP_202_ACCEPTED,
                IngestResponse(status='ignored', reason=MISSING_USERNAME_REASON, received_at=received_at_iso),
            )

        try:
            persist_telemetry_event.send(event.to_payload())
        except IngestQueueSaturated as exc:
            DiscardLog.record(raw, 'queue saturated', received_at=received_at)
            return _error_outcome(exc.code, exc.message)

        logger.debug('telemetry event accepted', **event.summary())
        return _response(status.HTTP_200_OK, IngestResponse(status='ok', received_at=received_at_iso))

    @staticmethod
    def validate_and_parse(raw: Dict[str, Any]) -> TelemetryEvent:
        is_valid, errors = schema.validate(raw)
        if not is_valid:
            raise TelemetryValidationError(errors)
        return parser.parse(raw)
