from fastapi import APIRouter

from telemetry_server.app.router import api_router as app_router
from telemetry_server.app.router import ingest_router
from telemetry_server.platform.router import api_router as platform_router

api_router = APIRouter()
api_router.include_router(platform_router)
api_router.include_router(ingest_router)
api_router.include_router(app_router, prefix='/api')
