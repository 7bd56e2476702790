from fastapi import APIRouter

from telemetry_server.app.analytics.router import router as analytics_router
from telemetry_server.app.events.router import router as events_router
from telemetry_server.app.telemetry.router import router as telemetry_router

# Ingest lives at the root, everything the dashboard reads under /api
ingest_router = APIRouter()
ingest_router.include_router(telemetry_router, tags=['telemetry'])

api_router = APIRouter()
# Trash routes before the analytics event lookups
api_router.include_router(events_router, tags=['events'])
api_router.include_router(analytics_router, tags=['analytics'])
