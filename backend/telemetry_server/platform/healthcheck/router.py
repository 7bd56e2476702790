from typing import Optional

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette import status

from telemetry_server.platform.healthcheck.service import HealthService

router = APIRouter()


def _wants_json(request: Request, response_format: Optional[str]) -> bool:
    return response_format == 'json' or 'application/json' in request.headers.get('accept', '')


@router.get('/health')
@router.get('/healthz')
def health_check(request: Request, response_format: Optional[str] = Query(None, alias='format')) -> Response:
    """
    Used by load balancers and uptime checks. Answers 503 when the
    database is unreachable.
    """
    health = HealthService.check()
    status_code = status.HTTP_200_OK if HealthService.is_healthy(health) else status.HTTP_503_SERVICE_UNAVAILABLE

    if _wants_json(request, response_format):
        return JSONResponse(health, status_code=status_code)

    total_events = health['stats']['totalEvents'] or 0
    return PlainTextResponse(f"{health['status']} - {total_events} events", status_code=status_code)
