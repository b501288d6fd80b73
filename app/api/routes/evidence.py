"""
Evidence API Routes - קריאת לוג הראיות לפי "מאז"

הקריאות eventually consistent: צרכן שמחכה לרשומה מבצע polling עד deadline.
"""
from datetime import datetime
from typing import Any, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.internal_auth import require_internal_api_key
from app.api.routes.bookings import BookingListEnvelope, BookingResponse, naive_utc
from app.db.database import get_db
from app.db.models.audit_log import AuditActorType, AuditSeverity
from app.domain.services.audit_service import AuditService, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()


class AuditEntryResponse(BaseModel):
    id: int
    actor_type: AuditActorType
    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str
    severity: AuditSeverity
    request_id: str | None
    payload: dict[str, Any] | None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("actor_type", "severity")
    def serialize_enum(self, v) -> str:
        return v.value


class AuditListEnvelope(BaseModel):
    ok: bool = True
    entries: List[AuditEntryResponse]


@router.get("/audit", response_model=AuditListEnvelope)
async def list_audit_since(
    since: datetime = Query(...),
    action: str | None = Query(None),
    entity_type: str | None = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _: None = Depends(require_internal_api_key),
    db: AsyncSession = Depends(get_db),
) -> AuditListEnvelope:
    rows = await AuditService(db).list_audit_since(naive_utc(since), limit, action=action, entity_type=entity_type)
    return AuditListEnvelope(entries=[AuditEntryResponse.model_validate(r) for r in rows])


@router.get("/conversations/{conversation_id}/audit", response_model=AuditListEnvelope)
async def list_conversation_audit_since(
    conversation_id: int,
    since: datetime = Query(...),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _: None = Depends(require_internal_api_key),
    db: AsyncSession = Depends(get_db),
) -> AuditListEnvelope:
    rows = await AuditService(db).list_conversation_audit_since(conversation_id, naive_utc(since), limit)
    return AuditListEnvelope(entries=[AuditEntryResponse.model_validate(r) for r in rows])


@router.get("/bookings", response_model=BookingListEnvelope)
async def list_bookings_since(
    instructor_id: int = Query(...),
    since: datetime = Query(...),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _: None = Depends(require_internal_api_key),
    db: AsyncSession = Depends(get_db),
) -> BookingListEnvelope:
    rows = await AuditService(db).list_bookings_since(instructor_id, naive_utc(since), limit)
    return BookingListEnvelope(bookings=[BookingResponse.model_validate(b) for b in rows])
