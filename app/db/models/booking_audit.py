"""
Booking Audit Model - שורה אחת לכל מעבר סטטוס שהתקבל
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Enum as SQLEnum

from app.db.database import Base
from app.db.models.booking import BookingStatus


class AuditActor(str, enum.Enum):
    HUMAN = "human"
    SYSTEM = "system"


class BookingAudit(Base):
    """רישום append-only, לא מתעדכן ולא נמחק"""

    __tablename__ = "booking_audit"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    previous_state = Column(SQLEnum(BookingStatus), nullable=False)
    new_state = Column(SQLEnum(BookingStatus), nullable=False)
    actor = Column(SQLEnum(AuditActor), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
