from fastapi import APIRouter

from telemetry_server.platform.healthcheck import router as healthcheck
from telemetry_server.platform.version import router as version

api_router = APIRouter()
api_router.include_router(healthcheck.router, tags=['healthcheck'])
api_router.include_router(version.router, prefix='/version', tags=['version'])
