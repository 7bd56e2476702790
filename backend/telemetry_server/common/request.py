import time
import uuid
from typing import Any, Dict, Optional

from fastapi import status
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from telemetry_server.common import context

REQUEST_ID_HEADER = 'X-Request-ID'


def get_user_ip_address_from_header(forwarded_header: Optional[str]) -> str:
    """
    First hop of an `x-forwarded-for` chain, which is the original client
    """
    if not forwarded_header:
        return ''
    return forwarded_header.split(',')[0].strip()


def get_user_ip_address_from_request(request: Request) -> str:
    forwarded = get_user_ip_address_from_header(request.headers.get('x-forwarded-for'))
    if forwarded:
        return forwarded
    return request.client.host if request.client else ''


def _request_log_fields(request: Request, started: float, status_code: int) -> Dict[str, Any]:
    return {
        'http_status_code': status_code,
        'http_method': request.method,
        'endpoint': request.url.path,
        'user_ip': get_user_ip_address_from_request(request),
        'duration': round(time.perf_counter() - started, 3),
    }


def _log_for_status(status_code: int):
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        return logger.error
    if status_code >= status.HTTP_400_BAD_REQUEST:
        return logger.warning
    return logger.info


class RequestResponseMiddleware(BaseHTTPMiddleware):
    """
    Tags every log line of a request with its request id and writes one
    summary line when the response leaves
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = context.set_request_id(request_id)
        summary = f'{request.method} {request.url.path}'

        try:
            with logger.contextualize(request_id=request_id):
                try:
                    response = await call_next(request)
                except Exception:
                    failed = status.HTTP_500_INTERNAL_SERVER_ERROR
                    logger.error(f'{summary} {failed}', **_request_log_fields(request, started, failed))
                    raise

                log = _log_for_status(response.status_code)
                log(f'{summary} {response.status_code}', **_request_log_fields(request, started, response.status_code))
        finally:
            context.reset_request_id(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
