"""API routes for Dealflow."""

from fastapi import APIRouter

from .deal_close_requests import router as deal_close_requests_router
from .leads import router as leads_router
from .notifications import router as notifications_router
from .realtime import router as realtime_router
from .stages import router as stages_router
from .tasks import router as tasks_router

# Main API router, mounted under the API prefix
api_router = APIRouter()

# Pipeline
api_router.include_router(stages_router)
api_router.include_router(leads_router)
api_router.include_router(deal_close_requests_router)

# Collaboration
api_router.include_router(tasks_router)
api_router.include_router(notifications_router)

__all__ = ["api_router", "realtime_router"]
