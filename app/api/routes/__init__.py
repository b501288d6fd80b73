"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.bookings import router as bookings_router
from app.api.routes.conversations import router as conversations_router
from app.api.routes.evidence import router as evidence_router
from app.api.routes.inbound import router as inbound_router

router = APIRouter()

router.include_router(bookings_router, prefix="/bookings", tags=["Bookings"])
router.include_router(conversations_router, prefix="/conversations", tags=["Conversations"])
# Internal endpoints (X-Internal-API-Key)
router.include_router(inbound_router, prefix="/inbound", tags=["Inbound"])
router.include_router(evidence_router, prefix="/evidence", tags=["Evidence"])
