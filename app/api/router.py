from fastapi import APIRouter

from app.api.routes.meetings import router as meetings_router
from app.api.routes.sync import router as sync_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

# Unversioned routes used by current clients.
api_router.include_router(meetings_router)
api_router.include_router(sync_router)

# Versioned routes for long-term API evolution.
v1_router.include_router(meetings_router)
v1_router.include_router(sync_router)
api_router.include_router(v1_router)
