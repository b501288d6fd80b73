"""
Booking Service - מחזור החיים של הזמנה

כל שינוי סטטוס עובר דרך apply_transition: אימות בעלות, אימות הקשת
במכונת המצבים, ואז UPDATE מותנה בסטטוס הנוכחי + שורת BookingAudit
באותה טרנזקציה. כך שני כותבים מקבילים לא יכולים לדלג על מצב.
"""
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ForbiddenException,
    InvalidBookingTransitionError,
    InvalidPayloadException,
    InvalidTimeRangeException,
    NotFoundException,
)
from app.core.logging import get_logger
from app.db.models.audit_log import AuditAction, AuditActorType
from app.db.models.booking import Booking, BookingStatus
from app.db.models.booking_audit import AuditActor, BookingAudit
from app.db.models.customer_profile import CustomerProfile
from app.domain.services.audit_service import AuditService, BOOKING_ENTITY
from app.state_machine.states import is_terminal, transition_booking_state

logger = get_logger(__name__)

EDITABLE_FIELDS = ("start_time", "end_time", "notes", "meeting_point", "customer_name")


class BookingService:
    """Service for managing bookings"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_booking(self, booking_id: int, for_update: bool = False) -> Optional[Booking]:
        query = select(Booking).where(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_owned_booking(
        self,
        booking_id: int,
        instructor_id: int,
        for_update: bool = False,
    ) -> Booking:
        """
        טעינת הזמנה ובדיקת בעלות.

        בדיקות הקיום והבעלות קודמות לכל בדיקת מעבר, כך ש-404/403
        מוחזרים בלי קשר לפעולה המבוקשת.
        """
        booking = await self.get_booking(booking_id, for_update=for_update)
        if not booking:
            raise NotFoundException("Booking", booking_id)
        if booking.instructor_id != instructor_id:
            logger.warning(
                "ניסיון גישה להזמנה של מדריך אחר",
                extra_data={"booking_id": booking_id, "instructor_id": instructor_id},
            )
            raise ForbiddenException("Booking", booking_id)
        return booking

    async def create_booking(
        self,
        instructor_id: int,
        start_time: datetime,
        end_time: datetime,
        customer_id: Optional[int] = None,
        customer_name: Optional[str] = None,
        notes: Optional[str] = None,
        meeting_point: Optional[str] = None,
        submit: bool = False,
    ) -> Booking:
        """
        Create a booking in ``draft``.

        With ``submit=True`` the draft -> pending step is applied in the
        same commit, with its audit row.
        """
        if end_time <= start_time:
            raise InvalidTimeRangeException(start_time, end_time)

        if customer_id is not None:
            customer = await self.db.get(CustomerProfile, customer_id)
            if not customer:
                raise NotFoundException("Customer", customer_id)
            if customer.instructor_id != instructor_id:
                raise ForbiddenException("Customer", customer_id)

        booking = Booking(
            instructor_id=instructor_id,
            customer_id=customer_id,
            status=BookingStatus.DRAFT,
            start_time=start_time,
            end_time=end_time,
            customer_name=customer_name,
            notes=notes,
            meeting_point=meeting_point,
        )
        self.db.add(booking)
        await self.db.flush()

        if submit:
            booking.status = transition_booking_state(BookingStatus.DRAFT, BookingStatus.PENDING, booking.id)
            self.db.add(BookingAudit(
                booking_id=booking.id,
                previous_state=BookingStatus.DRAFT,
                new_state=BookingStatus.PENDING,
                actor=AuditActor.HUMAN,
            ))

        self.audit.record(
            action=AuditAction.BOOKING_CREATED,
            entity_type=BOOKING_ENTITY,
            entity_id=booking.id,
            actor_type=AuditActorType.INSTRUCTOR,
            actor_id=instructor_id,
            payload={"status": booking.status.value},
        )
        await self.db.commit()
        await self.db.refresh(booking)

        logger.info(
            "Booking created",
            extra_data={
                "booking_id": booking.id,
                "instructor_id": instructor_id,
                "status": booking.status.value,
            },
        )
        return booking

    async def apply_transition(
        self,
        booking_id: int,
        instructor_id: int,
        target: BookingStatus,
        actor: AuditActor = AuditActor.HUMAN,
        details: Optional[dict[str, Any]] = None,
    ) -> Booking:
        """
        Move a booking to ``target`` and append exactly one audit row.

        ``details`` are column updates written by the same conditional
        UPDATE, so an edit and its implicit transition land together.
        """
        booking = await self.get_owned_booking(booking_id, instructor_id, for_update=True)
        current = booking.status
        target = transition_booking_state(current, target, booking_id)

        values: dict[str, Any] = dict(details or {})
        values["status"] = target
        values["updated_at"] = datetime.utcnow()

        try:
            # UPDATE מותנה בסטטוס הנוכחי: אם כותב אחר הקדים אותנו, rowcount=0
            result = await self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                fresh = await self.get_booking(booking_id)
                fresh_status = fresh.status.value if fresh else current.value
                logger.warning(
                    "מעבר סטטוס נדחה בגלל כתיבה מקבילה",
                    extra_data={
                        "booking_id": booking_id,
                        "expected_status": current.value,
                        "actual_status": fresh_status,
                        "target_status": target.value,
                    },
                )
                raise InvalidBookingTransitionError(fresh_status, target.value, booking_id)

            self.db.add(BookingAudit(
                booking_id=booking_id,
                previous_state=current,
                new_state=target,
                actor=actor,
            ))
            self.audit.record(
                action=AuditAction.BOOKING_STATUS_CHANGED,
                entity_type=BOOKING_ENTITY,
                entity_id=booking_id,
                actor_type=AuditActorType.INSTRUCTOR if actor == AuditActor.HUMAN else AuditActorType.SYSTEM,
                actor_id=instructor_id if actor == AuditActor.HUMAN else None,
                payload={"from": current.value, "to": target.value},
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "כשלון בשמירת מעבר סטטוס",
                extra_data={"booking_id": booking_id, "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()
            raise

        await self.db.refresh(booking)
        logger.info(
            "Booking status changed",
            extra_data={
                "booking_id": booking_id,
                "from": current.value,
                "to": target.value,
                "actor": actor.value,
            },
        )
        return booking

    async def set_status(
        self,
        booking_id: int,
        instructor_id: int,
        target: BookingStatus,
    ) -> Booking:
        """Explicit status update, validated by the same state machine"""
        return await self.apply_transition(booking_id, instructor_id, target, AuditActor.HUMAN)

    async def modify_booking(
        self,
        booking_id: int,
        instructor_id: int,
        changes: Optional[dict[str, Any]] = None,
    ) -> Booking:
        """פעולת modify מפורשת: מעבר ל-modified, אפשר יחד עם שינוי פרטים"""
        changes = {k: v for k, v in (changes or {}).items() if k in EDITABLE_FIELDS}
        if "start_time" in changes or "end_time" in changes:
            booking = await self.get_owned_booking(booking_id, instructor_id)
            start_time = changes.get("start_time", booking.start_time)
            end_time = changes.get("end_time", booking.end_time)
            if end_time <= start_time:
                raise InvalidTimeRangeException(start_time, end_time)
        return await self.apply_transition(
            booking_id, instructor_id, BookingStatus.MODIFIED, AuditActor.HUMAN, details=changes or None
        )

    async def update_details(
        self,
        booking_id: int,
        instructor_id: int,
        changes: dict[str, Any],
    ) -> Booking:
        """
        עריכת פרטי הזמנה.

        - confirmed: העריכה מעבירה ל-modified עם שורת audit אחת.
        - modified: עדכון פרטים בלבד, בלי שורת audit נוספת.
        - draft/pending: עדכון פרטים בלבד.
        - declined/cancelled: נדחה כמעבר לא חוקי.
        """
        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        if not changes:
            raise InvalidPayloadException("No editable fields supplied")

        booking = await self.get_owned_booking(booking_id, instructor_id)

        start_time = changes.get("start_time", booking.start_time)
        end_time = changes.get("end_time", booking.end_time)
        if end_time <= start_time:
            raise InvalidTimeRangeException(start_time, end_time)

        if booking.status == BookingStatus.CONFIRMED:
            return await self.apply_transition(
                booking_id, instructor_id, BookingStatus.MODIFIED, AuditActor.HUMAN, details=changes
            )

        if is_terminal(booking.status):
            raise InvalidBookingTransitionError(
                booking.status.value, BookingStatus.MODIFIED.value, booking_id
            )

        for field_name, value in changes.items():
            setattr(booking, field_name, value)
        booking.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(booking)

        logger.info(
            "Booking details updated",
            extra_data={
                "booking_id": booking_id,
                "status": booking.status.value,
                "fields": sorted(changes),
            },
        )
        return booking

    async def get_booking_lifecycle(self, booking_id: int, instructor_id: int) -> List[dict[str, Any]]:
        """ציר זמן: יצירה ואחריה כל מעבר, לפי סדר כרונולוגי"""
        booking = await self.get_owned_booking(booking_id, instructor_id)
        result = await self.db.execute(
            select(BookingAudit)
            .where(BookingAudit.booking_id == booking_id)
            .order_by(BookingAudit.created_at.asc(), BookingAudit.id.asc())
        )
        events: List[dict[str, Any]] = [{
            "type": "booking_created",
            "at": booking.created_at,
            "from": None,
            "to": BookingStatus.DRAFT.value,
            "actor": None,
        }]
        for row in result.scalars().all():
            events.append({
                "type": "manual_override" if row.actor == AuditActor.HUMAN else "status_transition",
                "at": row.created_at,
                "from": row.previous_state.value,
                "to": row.new_state.value,
                "actor": row.actor.value,
            })
        return events

    async def list_customer_bookings(
        self,
        instructor_id: int,
        customer_id: int,
        statuses: Optional[tuple[BookingStatus, ...]] = None,
    ) -> List[Booking]:
        query = select(Booking).where(
            Booking.instructor_id == instructor_id,
            Booking.customer_id == customer_id,
        )
        if statuses:
            query = query.where(Booking.status.in_(statuses))
        result = await self.db.execute(query.order_by(Booking.start_time.asc()))
        return list(result.scalars().all())
