"""
API routes aggregation.
"""

from fastapi import APIRouter

from .audit_events import router as audit_events_router
from .evaluate import router as evaluate_router
from .flags import router as flags_router

router = APIRouter()

router.include_router(evaluate_router, prefix="/evaluate", tags=["evaluate"])
router.include_router(flags_router, prefix="/flags", tags=["flags"])
router.include_router(audit_events_router, prefix="/audit-events", tags=["audit-events"])
