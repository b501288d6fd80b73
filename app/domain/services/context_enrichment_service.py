"""
Context Enrichment Service - הקשר לקוח, אימות שינוי/ביטול וסיכום קודם

שלב קריאה בלבד: אין כאן שום קריאה לנתיבי השינוי של מכונת המצבים.
כל תת-שאילתה נכשלת "פתוח": נרשמת אזהרה והשדה נשאר ריק.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models.booking import Booking, BookingStatus
from app.db.models.conversation import Conversation
from app.db.models.conversation_summary import ConversationSummary
from app.db.models.customer_profile import CustomerProfile
from app.domain.services.ai import Intent
from app.domain.services.reschedule_parser import RescheduleRequest, TimeWindow, parse_reschedule_request

logger = get_logger(__name__)

RECENT_COMPLETED_DAYS = 30
MATCH_TOLERANCE = timedelta(minutes=15)
VERIFIABLE_INTENTS = frozenset({Intent.RESCHEDULE, Intent.CANCEL})
UPCOMING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.MODIFIED)
MATCHABLE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.MODIFIED)


@dataclass(frozen=True)
class BookingContext:
    booking_id: int
    status: str
    start_time: datetime
    end_time: datetime
    meeting_point: Optional[str]
    customer_name: Optional[str]
    notes: Optional[str]

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingContext":
        return cls(
            booking_id=booking.id,
            status=booking.status.value,
            start_time=booking.start_time,
            end_time=booking.end_time,
            meeting_point=booking.meeting_point,
            customer_name=booking.customer_name,
            notes=booking.notes,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "status": self.status,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "meeting_point": self.meeting_point,
        }


@dataclass
class EnrichedContext:
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    upcoming_bookings: List[BookingContext] = field(default_factory=list)
    recent_completed: List[BookingContext] = field(default_factory=list)
    reschedule_request: Optional[RescheduleRequest] = None
    reschedule_verified: bool = False
    reschedule_booking_id: Optional[int] = None
    prior_summary: Optional[str] = None
    prior_summary_json: Optional[dict[str, Any]] = None
    failed_lookups: List[str] = field(default_factory=list)

    @property
    def customer_context_used(self) -> bool:
        return bool(self.upcoming_bookings or self.recent_completed)

    @property
    def summary_used(self) -> bool:
        return self.prior_summary is not None

    @property
    def next_booking(self) -> Optional[BookingContext]:
        return self.upcoming_bookings[0] if self.upcoming_bookings else None

    def structured(self) -> dict[str, Any]:
        """הקשר מובנה לסיכום ולטיוטה, בלי PII מעבר לשם הלקוח"""
        return {
            "customer_name": self.customer_name,
            "upcoming_booking": self.next_booking.to_dict() if self.next_booking else None,
            "completed_lessons": len(self.recent_completed),
            "reschedule_verified": self.reschedule_verified,
        }


def _within(actual: datetime, wanted_day: date, wanted_time, tolerance: timedelta) -> bool:
    return abs(actual - datetime.combine(wanted_day, wanted_time)) <= tolerance


def booking_matches_window(booking: BookingContext, request: RescheduleRequest) -> bool:
    """
    האם ההזמנה תואמת את חלון ה"מ" שהלקוח הזכיר.

    תאריך + חלון: התחלה (וסיום אם צוין) בטווח סובלנות באותו יום.
    תאריך בלבד: כל הזמנה באותו יום. חלון בלבד: שעון תואם בכל יום עתידי.
    """
    window: Optional[TimeWindow] = request.from_window
    if request.date is None and window is None:
        return False
    day = request.date or booking.start_time.date()
    if request.date is not None and booking.start_time.date() != request.date:
        return False
    if window is None:
        return True
    if not _within(booking.start_time, day, window.start, MATCH_TOLERANCE):
        return False
    if window.end is not None and not _within(booking.end_time, booking.end_time.date(), window.end, MATCH_TOLERANCE):
        return False
    return True


class ContextEnrichmentService:
    """Read-only lookups that give the draft stage its context"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _resolve_customer(self, conversation: Conversation) -> Optional[CustomerProfile]:
        if conversation.customer_id is not None:
            return await self.db.get(CustomerProfile, conversation.customer_id)
        # שיחה שלא קושרה עדיין: ניסיון לפי מספר הטלפון של הערוץ
        result = await self.db.execute(
            select(CustomerProfile)
            .where(
                CustomerProfile.instructor_id == conversation.instructor_id,
                CustomerProfile.phone_number == conversation.external_identity,
            )
            .order_by(CustomerProfile.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _bookings(
        self,
        instructor_id: int,
        customer_id: int,
        statuses: tuple[BookingStatus, ...],
    ) -> List[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(
                Booking.instructor_id == instructor_id,
                Booking.customer_id == customer_id,
                Booking.status.in_(statuses),
            )
            .order_by(Booking.start_time.asc())
        )
        return list(result.scalars().all())

    async def _load_summary(self, context: EnrichedContext, conversation_id: int) -> None:
        try:
            summary = await self.db.get(ConversationSummary, conversation_id)
        except SQLAlchemyError as e:
            context.failed_lookups.append("summary")
            logger.warning(
                "Prior summary lookup failed",
                extra_data={"conversation_id": conversation_id, "error": str(e)},
            )
            return
        if summary:
            context.prior_summary = summary.summary_text
            context.prior_summary_json = summary.summary_json

    async def enrich(
        self,
        conversation: Conversation,
        message_text: str,
        intent: Optional[Intent],
        now: Optional[datetime] = None,
    ) -> EnrichedContext:
        now = now or datetime.utcnow()
        context = EnrichedContext()
        await self._load_summary(context, conversation.id)

        try:
            customer = await self._resolve_customer(conversation)
        except SQLAlchemyError as e:
            context.failed_lookups.append("customer")
            logger.warning(
                "Customer lookup failed",
                extra_data={"conversation_id": conversation.id, "error": str(e)},
            )
            customer = None

        if intent in VERIFIABLE_INTENTS:
            context.reschedule_request = parse_reschedule_request(message_text, now.date())

        if customer is None:
            return context
        context.customer_id = customer.id
        context.customer_name = customer.display_name

        try:
            upcoming = await self._bookings(conversation.instructor_id, customer.id, UPCOMING_STATUSES)
            context.upcoming_bookings = [
                BookingContext.from_booking(b) for b in upcoming if b.start_time >= now
            ]
        except SQLAlchemyError as e:
            context.failed_lookups.append("upcoming_bookings")
            logger.warning(
                "Upcoming bookings lookup failed",
                extra_data={"conversation_id": conversation.id, "error": str(e)},
            )

        try:
            history = await self._bookings(conversation.instructor_id, customer.id, MATCHABLE_STATUSES)
            cutoff = now - timedelta(days=RECENT_COMPLETED_DAYS)
            context.recent_completed = [
                BookingContext.from_booking(b) for b in history if cutoff <= b.end_time < now
            ]
        except SQLAlchemyError as e:
            context.failed_lookups.append("recent_completed")
            logger.warning(
                "Completed bookings lookup failed",
                extra_data={"conversation_id": conversation.id, "error": str(e)},
            )

        if context.reschedule_request is not None:
            self._verify(context, now)
        return context

    def _verify(self, context: EnrichedContext, now: datetime) -> None:
        """
        אימות מול הזמנות פעילות של אותו לקוח אצל אותו מדריך בלבד.

        רק התאמה לחלון ה"מ" מסמנת verified. אין התאמה: verified=False
        ואין מזהה הזמנה.
        """
        request = context.reschedule_request
        candidates = [
            b for b in context.upcoming_bookings
            if b.status in {s.value for s in MATCHABLE_STATUSES}
        ]
        for booking in candidates:
            if booking_matches_window(booking, request):
                context.reschedule_verified = True
                context.reschedule_booking_id = booking.booking_id
                logger.info(
                    "Reschedule request matched an existing booking",
                    extra_data={"booking_id": booking.booking_id, "customer_id": context.customer_id},
                )
                return
        logger.info(
            "Reschedule request did not match any booking",
            extra_data={
                "customer_id": context.customer_id,
                "candidates": len(candidates),
                "has_date": request.date is not None,
                "has_window": request.from_window is not None,
            },
        )
