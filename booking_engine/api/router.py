from fastapi import APIRouter

from booking_engine.api.routes.health import router as health_router
from booking_engine.api.routes.slots import router as slots_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

api_router.include_router(slots_router)

# Versioned routes for long-term API evolution.
v1_router.include_router(slots_router)
api_router.include_router(v1_router)
