from typing import Any, Dict, Optional

import sentry_sdk
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

GENERIC_FAILURE = 'Internal failure.'


class InternalException(Exception):
    """
    Failures of the service itself. Logged with their context, the client only
    ever sees a generic 500.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = GENERIC_FAILURE
    default_code = 'internal_failure'

    def __init__(self, message: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_detail
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f'{type(self).__name__}({self.message})'


class APIException(Exception):
    """
    Client facing failures, the message is returned as `detail` with
    `status_code` unless a `code` is passed
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid request.'
    default_code = 'invalid_request'

    def __init__(self, message: Optional[str] = None, code: Optional[int] = None):
        self.message = message or self.default_detail
        self.code = code or self.status_code
        super().__init__(self.message)


def _request_label(request: Request) -> str:
    return f'{request.method} {request.url.path}'


async def internal_exception_handler(request: Request, exc: InternalException) -> JSONResponse:
    logger.opt(exception=exc).error(
        f'internal failure on {_request_label(request)}',
        error_kind=exc.default_code,
        **({'error_context': exc.context} if exc.context else {}),
    )
    return JSONResponse(status_code=exc.status_code, content={'detail': GENERIC_FAILURE})


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    if exc.code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning(f'{_request_label(request)} answered {exc.code}', error_kind=exc.default_code)
    return JSONResponse(status_code=exc.code, content=jsonable_encoder({'detail': exc.message}))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f'unhandled error on {_request_label(request)}', error_kind=type(exc).__name__)
    sentry_sdk.capture_exception(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={'detail': GENERIC_FAILURE})


async def inbound_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Bad query parameters, e.g. a cleanup `days` outside 1..365
    """
    errors = [
        {
            'loc': error['loc'],
            'message': error['msg'],
            'input': error.get('input'),
            'type': error['type'],
        }
        for error in exc.errors()
    ]
    logger.info(
        f'rejected parameters on {_request_label(request)}',
        locations=['.'.join(str(part) for part in error['loc']) for error in errors],
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=jsonable_encoder({'detail': errors}))


def error_response(status_code: int, message: str) -> JSONResponse:
    """
    Dashboard facing error body, `{status: error, message}`
    """
    return JSONResponse(status_code=status_code, content={'status': 'error', 'message': message})
