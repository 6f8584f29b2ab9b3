"""API routes for Ensemble."""

from fastapi import APIRouter

from .audit import router as audit_router
from .itsm import router as itsm_router
from .links import router as links_router
from .scorecard import router as scorecard_router
from .turnover import router as turnover_router

# Main API router
api_router = APIRouter()

api_router.include_router(scorecard_router)
api_router.include_router(itsm_router)
api_router.include_router(turnover_router)
api_router.include_router(links_router)
api_router.include_router(audit_router)

__all__ = ["api_router"]
