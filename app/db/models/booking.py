"""
Booking Model - הזמנת שיעור
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Enum as SQLEnum

from app.db.database import Base


class BookingStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    MODIFIED = "modified"
    CANCELLED = "cancelled"


class Booking(Base):
    """
    הזמנה של לקוח אצל מדריך.

    הסטטוס משתנה רק דרך BookingService, שמאמת מול מכונת המצבים
    וכותב שורת BookingAudit באותה טרנזקציה.
    """

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    instructor_id = Column(Integer, ForeignKey("instructors.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customer_profiles.id"), nullable=True, index=True)
    status = Column(SQLEnum(BookingStatus), default=BookingStatus.DRAFT, nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    customer_name = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    meeting_point = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)
