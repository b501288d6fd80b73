"""
Booking Lifecycle State Machine
"""
from app.state_machine.states import (
    BOOKING_TRANSITIONS,
    can_transition,
    transition_booking_state,
    is_terminal,
    is_active,
)

__all__ = [
    "BOOKING_TRANSITIONS",
    "can_transition",
    "transition_booking_state",
    "is_terminal",
    "is_active",
]
