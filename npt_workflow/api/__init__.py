"""API routes for the NPT workflow."""

from fastapi import APIRouter

from .directory import router as directory_router
from .periods import router as periods_router
from .reports import router as reports_router

# Main API router
api_router = APIRouter()

api_router.include_router(reports_router)
api_router.include_router(periods_router)
api_router.include_router(directory_router)

__all__ = ["api_router"]
