import json
import logging
import sys
from typing import Any

from loguru import logger

from telemetry_server import settings
from telemetry_server.common import context

SERVICE_NAME = 'mcp-telemetry-server'

# Noisy third party loggers that get their own level
QUIET_LOGGERS = {
    'uvicorn.access': logging.WARNING,
    'sqlalchemy.engine': logging.WARNING,
    'dramatiq': logging.INFO,
}

LEVEL_MARKERS = {
    logging.DEBUG: '·',
    logging.INFO: ' ',
    logging.WARNING: '!',
    logging.ERROR: 'x',
    logging.CRITICAL: 'X',
}


class InterceptHandler(logging.Handler):
    """
    Routes stdlib logging (uvicorn, sqlalchemy, dramatiq) into loguru, see
    https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging
    """

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def json_log_formatter(record: dict[str, Any]) -> str:
    """
    One JSON object per line for log shippers. Structured `extra` fields stay
    at the top level next to the message.
    """
    payload = dict(record['extra'])
    payload.update(
        {
            'timestamp': record['time'].isoformat(),
            'level': record['level'].name,
            'message': record['message'],
            'logger': f"{record['name']}:{record['function']}:{record['line']}",
            'service': SERVICE_NAME,
            'environment': settings.ENVIRONMENT,
        }
    )
    payload.setdefault('request_id', context.get_safe_request_id() or '')

    exception = record['exception']
    if exception is not None:
        record['exception'] = None
        payload['error'] = {
            'exception_type': exception.type.__name__ if exception.type else '',
            'message': str(exception.value),
        }

    record['extra']['_json'] = json.dumps(payload, default=str)
    return '{extra[_json]}\n'


def _render_traceback(exception: Any) -> None:
    from rich.console import Console
    from rich.traceback import Traceback

    Console(stderr=True).print(
        Traceback.from_exception(
            exc_type=exception.type,
            exc_value=exception.value,
            traceback=exception.traceback,
            show_locals=True,
            locals_max_length=5,
            locals_max_string=40,
            max_frames=8,
        )
    )


def console_log_formatter(record: dict[str, Any]) -> str:
    """
    Compact lines for a terminal: request lines carry their duration, other
    lines carry a level marker and the structured fields.
    """
    extra = record['extra']
    duration = extra.get('duration')
    marker = f'{duration}s' if duration is not None else LEVEL_MARKERS.get(record['level'].no, ' ')

    fields = ' '.join(f'{key}={value}' for key, value in extra.items() if key not in ('duration', 'request_id', '_fields'))
    extra['_fields'] = f' [{fields}]' if fields else ''

    log_format = (
        '<green>{time:HH:mm:ss.SSS}</green> '
        f'<magenta>{marker:>6}</magenta> '
        '<cyan>{name}:{line}</cyan> '
        '<level>{message}</level><dim>{extra[_fields]}</dim>\n'
    )

    exception = record['exception']
    if exception is not None:
        if settings.DEBUG:
            _render_traceback(exception)
        else:
            log_format += '{exception}\n'
    return log_format


def configure_logging() -> None:
    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(settings.LOG_LEVEL)
    for name in list(logging.root.manager.loggerDict.keys()):
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = []
        stdlib_logger.propagate = True
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logger.remove()
    logger.add(
        sys.stdout,
        level=settings.LOG_LEVEL,
        format=json_log_formatter if settings.IS_DEPLOYED_ENV else console_log_formatter,
        backtrace=False,
        diagnose=False,
    )
    logger.debug(f'logging configured at {settings.LOG_LEVEL}')
