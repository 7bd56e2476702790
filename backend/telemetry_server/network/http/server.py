from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from loguru import logger
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.errors import ServerErrorMiddleware

from telemetry_server import settings
from telemetry_server.common.exceptions import (
    APIException,
    InternalException,
    api_exception_handler,
    inbound_validation_exception_handler,
    internal_exception_handler,
    unhandled_exception_handler,
)
from telemetry_server.common.request import RequestResponseMiddleware
from telemetry_server.network.cache.cache import CacheSweeper, clear_all_caches
from telemetry_server.network.database.middleware import HTTPSessionManagerMiddleware
from telemetry_server.network.http.router import api_router
from telemetry_server.network.queue.worker import worker_pool

# High volume paths that are never traced
UNTRACED_PATHS = frozenset({'/health', '/healthz', '/telemetry'})


def sample_trace(sampling_context: dict) -> float:
    scope = sampling_context.get('asgi_scope') or {}
    if scope.get('path') in UNTRACED_PATHS:
        return 0
    return settings.SENTRY_DEFAULT_SAMPLE_RATE


def configure_sentry() -> None:
    if not settings.SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        # Client errors are answered, not reported
        ignore_errors=[APIException],
        integrations=[StarletteIntegration(), FastApiIntegration()],
        traces_sampler=sample_trace,
    )


cache_sweeper = CacheSweeper()


@asynccontextmanager
async def lifespan(app: FastAPI):
    from telemetry_server import setup

    setup.prepare_database()
    if settings.INGEST_BROKER == 'memory':
        worker_pool.start()
    cache_sweeper.start()
    logger.info(f'{app.title} listening on {settings.HOST}:{settings.PORT}', broker=settings.INGEST_BROKER)

    yield

    # Queued telemetry is written before the workers stop
    worker_pool.stop(drain=True)
    cache_sweeper.stop()
    clear_all_caches()
    logger.info(f'{app.title} stopped')


def create_server() -> FastAPI:
    configure_sentry()
    show_docs = settings.IS_LOCAL or settings.DEBUG
    app = FastAPI(
        title=settings.API_TITLE,
        description=settings.API_DESCRIPTION,
        version='0.1.0',
        lifespan=lifespan,
        redirect_slashes=False,
        generate_unique_id_function=lambda route: route.name,
        openapi_url='/openapi.json' if show_docs else None,
        docs_url='/docs' if show_docs else None,
        redoc_url=None,
        separate_input_output_schemas=False,
    )

    # The last middleware added runs first: request logging wraps the session
    app.add_middleware(HTTPSessionManagerMiddleware, commit_on_success=settings.ATOMIC_REQUESTS)
    app.add_middleware(RequestResponseMiddleware)
    if settings.DEBUG:
        app.add_middleware(ServerErrorMiddleware, debug=True)
    if settings.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
            allow_credentials=True,
            allow_methods=settings.CORS_ALLOWED_METHODS,
            allow_headers=settings.CORS_ALLOWED_HEADERS,
        )

    app.add_exception_handler(RequestValidationError, inbound_validation_exception_handler)
    app.add_exception_handler(InternalException, internal_exception_handler)
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app


server = create_server()
