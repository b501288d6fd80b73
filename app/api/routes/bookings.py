"""
Booking API Routes

כל שינוי סטטוס עובר דרך BookingService ומכונת המצבים.
תשובת הצלחה: {"ok": true, "booking": {...}}.
"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_serializer, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_instructor, require_pilot_instructor
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.booking import Booking, BookingStatus
from app.db.models.instructor import Instructor
from app.domain.services.audit_service import AuditService, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from app.domain.services.booking_service import BookingService

logger = get_logger(__name__)

router = APIRouter()


class BookingResponse(BaseModel):
    """Response schema for booking data"""
    id: int
    instructor_id: int
    customer_id: int | None
    status: BookingStatus
    start_time: datetime
    end_time: datetime
    customer_name: str | None
    notes: str | None
    meeting_point: str | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}

    @field_serializer("status")
    def serialize_status(self, v: BookingStatus) -> str:
        return v.value


class BookingEnvelope(BaseModel):
    ok: bool = True
    booking: BookingResponse


class BookingListEnvelope(BaseModel):
    ok: bool = True
    bookings: List[BookingResponse]


class LifecycleEvent(BaseModel):
    type: str
    at: datetime | None
    from_state: str | None = None
    to_state: str
    actor: str | None


class LifecycleEnvelope(BaseModel):
    ok: bool = True
    booking_id: int
    events: List[LifecycleEvent]


def naive_utc(v: datetime | None) -> datetime | None:
    """זמני ההזמנות נשמרים כ-UTC ללא tzinfo, ערך עם אזור זמן מומר"""
    if v is None or v.tzinfo is None:
        return v
    return v.astimezone(timezone.utc).replace(tzinfo=None)


def _text(v: str | None, max_length: int) -> str | None:
    if v is None:
        return None
    v = v.strip()
    if len(v) > max_length:
        raise ValueError(f"must be at most {max_length} characters")
    return v or None


class BookingCreate(BaseModel):
    """Schema for creating a booking (starts as draft)"""
    start_time: datetime
    end_time: datetime
    customer_id: int | None = None
    customer_name: str | None = None
    notes: str | None = None
    meeting_point: str | None = None
    submit: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, v: datetime) -> datetime:
        return naive_utc(v)

    @field_validator("customer_name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        return _text(v, 200)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, v: str | None) -> str | None:
        return _text(v, 2000)

    @field_validator("meeting_point")
    @classmethod
    def validate_meeting_point(cls, v: str | None) -> str | None:
        return _text(v, 500)


class BookingUpdate(BaseModel):
    """Partial detail edit, only fields that were sent are applied"""
    start_time: datetime | None = None
    end_time: datetime | None = None
    customer_name: str | None = None
    notes: str | None = None
    meeting_point: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, v: datetime | None) -> datetime | None:
        return naive_utc(v)

    @field_validator("customer_name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        return _text(v, 200)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, v: str | None) -> str | None:
        return _text(v, 2000)

    @field_validator("meeting_point")
    @classmethod
    def validate_meeting_point(cls, v: str | None) -> str | None:
        return _text(v, 500)

    @model_validator(mode="after")
    def times_not_null(self) -> "BookingUpdate":
        for name in ("start_time", "end_time"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class StatusUpdate(BaseModel):
    status: BookingStatus


def _envelope(booking: Booking) -> BookingEnvelope:
    return BookingEnvelope(booking=BookingResponse.model_validate(booking))


@router.post(
    "",
    response_model=BookingEnvelope,
    status_code=201,
    summary="יצירת הזמנה",
    responses={402: {"description": "Pilot only"}, 403: {"description": "Onboarding required"}},
)
async def create_booking(
    body: BookingCreate,
    instructor: Instructor = Depends(require_pilot_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    booking = await BookingService(db).create_booking(
        instructor_id=instructor.id,
        start_time=body.start_time,
        end_time=body.end_time,
        customer_id=body.customer_id,
        customer_name=body.customer_name,
        notes=body.notes,
        meeting_point=body.meeting_point,
        submit=body.submit,
    )
    return _envelope(booking)


@router.get("", response_model=BookingListEnvelope, summary="הזמנות שעודכנו מאז")
async def list_bookings_since(
    since: datetime = Query(..., description="ISO timestamp (UTC)"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingListEnvelope:
    bookings = await AuditService(db).list_bookings_since(instructor.id, naive_utc(since), limit)
    return BookingListEnvelope(bookings=[BookingResponse.model_validate(b) for b in bookings])


@router.get("/{booking_id}", response_model=BookingEnvelope)
async def get_booking(
    booking_id: int,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    booking = await BookingService(db).get_owned_booking(booking_id, instructor.id)
    return _envelope(booking)


@router.get("/{booking_id}/lifecycle", response_model=LifecycleEnvelope, summary="ציר זמן של הזמנה")
async def get_booking_lifecycle(
    booking_id: int,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> LifecycleEnvelope:
    events = await BookingService(db).get_booking_lifecycle(booking_id, instructor.id)
    return LifecycleEnvelope(
        booking_id=booking_id,
        events=[
            LifecycleEvent(
                type=e["type"], at=e["at"], from_state=e["from"], to_state=e["to"], actor=e["actor"]
            )
            for e in events
        ],
    )


async def _transition(
    db: AsyncSession,
    booking_id: int,
    instructor: Instructor,
    target: BookingStatus,
) -> BookingEnvelope:
    booking = await BookingService(db).apply_transition(booking_id, instructor.id, target)
    return _envelope(booking)


@router.post("/{booking_id}/submit", response_model=BookingEnvelope, summary="draft -> pending")
async def submit_booking(
    booking_id: int,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    return await _transition(db, booking_id, instructor, BookingStatus.PENDING)


@router.post("/{booking_id}/accept", response_model=BookingEnvelope, summary="pending -> confirmed")
async def accept_booking(
    booking_id: int,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    return await _transition(db, booking_id, instructor, BookingStatus.CONFIRMED)


@router.post("/{booking_id}/reject", response_model=BookingEnvelope, summary="pending -> declined")
async def reject_booking(
    booking_id: int,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    return await _transition(db, booking_id, instructor, BookingStatus.DECLINED)


@router.post("/{booking_id}/modify", response_model=BookingEnvelope, summary="confirmed/modified -> modified")
async def modify_booking(
    booking_id: int,
    body: Optional[BookingUpdate] = None,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    booking = await BookingService(db).modify_booking(
        booking_id, instructor.id, body.changes() if body else None
    )
    return _envelope(booking)


@router.post("/{booking_id}/cancel", response_model=BookingEnvelope, summary="modified -> cancelled")
async def cancel_booking(
    booking_id: int,
    instructor: Instructor = Depends(require_pilot_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    return await _transition(db, booking_id, instructor, BookingStatus.CANCELLED)


@router.patch("/{booking_id}", response_model=BookingEnvelope, summary="עריכת פרטי הזמנה")
async def update_booking(
    booking_id: int,
    body: BookingUpdate,
    instructor: Instructor = Depends(require_pilot_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    booking = await BookingService(db).update_details(booking_id, instructor.id, body.changes())
    return _envelope(booking)


@router.patch("/{booking_id}/status", response_model=BookingEnvelope, summary="עדכון סטטוס מפורש")
async def update_booking_status(
    booking_id: int,
    body: StatusUpdate,
    instructor: Instructor = Depends(require_pilot_instructor),
    db: AsyncSession = Depends(get_db),
) -> BookingEnvelope:
    booking = await BookingService(db).set_status(booking_id, instructor.id, body.status)
    return _envelope(booking)
