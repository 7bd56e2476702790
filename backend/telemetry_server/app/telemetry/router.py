import sentry_sdk
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from telemetry_server.app.telemetry.service import TelemetryIngestService

router = APIRouter()


async def get_raw_body(request: Request) -> bytes:
    return await request.body()


@router.post('/telemetry')
def ingest_telemetry(body: bytes = Depends(get_raw_body)) -> JSONResponse:
    """
    Accepts one v1 or v2 telemetry event. Answers before the event is stored.
    """
    try:
        outcome = TelemetryIngestService.ingest(body)
    except Exception as exc:
        logger.opt(exception=exc).error('telemetry ingest failed', error_kind=type(exc).__name__)
        sentry_sdk.capture_exception(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={'status': 'error', 'message': 'Internal server error'},
        )
    return JSONResponse(status_code=outcome.status_code, content=outcome.content)
