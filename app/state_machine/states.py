"""
Booking Lifecycle States and Transitions
"""
from app.core.exceptions import InvalidBookingTransitionError
from app.db.models.booking import BookingStatus

# כל קשת שלא מופיעה כאן נדחית, כולל מעבר לאותו מצב (מלבד modified -> modified)
BOOKING_TRANSITIONS = {
    BookingStatus.DRAFT: [BookingStatus.PENDING],
    BookingStatus.PENDING: [BookingStatus.CONFIRMED, BookingStatus.DECLINED],
    BookingStatus.CONFIRMED: [BookingStatus.MODIFIED],
    BookingStatus.MODIFIED: [BookingStatus.MODIFIED, BookingStatus.CANCELLED],
    BookingStatus.DECLINED: [],
    BookingStatus.CANCELLED: [],
}

TERMINAL_STATES = frozenset({BookingStatus.DECLINED, BookingStatus.CANCELLED})

# הזמנות "חיות" מבחינת לוח הזמנים של המדריך
ACTIVE_STATES = frozenset({BookingStatus.CONFIRMED, BookingStatus.MODIFIED})


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS.get(BookingStatus(current), [])


def transition_booking_state(
    current: BookingStatus,
    target: BookingStatus,
    booking_id: int | None = None,
) -> BookingStatus:
    """
    Validate a single lifecycle step.

    Pure function: returns ``target`` when the edge is allowed and raises
    InvalidBookingTransitionError otherwise. Persistence is the caller's job.
    """
    current = BookingStatus(current)
    target = BookingStatus(target)
    if not can_transition(current, target):
        raise InvalidBookingTransitionError(current.value, target.value, booking_id)
    return target


def is_terminal(status: BookingStatus) -> bool:
    return BookingStatus(status) in TERMINAL_STATES


def is_active(status: BookingStatus) -> bool:
    return BookingStatus(status) in ACTIVE_STATES
