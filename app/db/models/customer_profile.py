"""
Customer Profile Model
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.db.database import Base


class CustomerProfile(Base):
    """לקוח של מדריך מסוים, מקושר לשיחה בשלב נפרד"""

    __tablename__ = "customer_profiles"

    id = Column(Integer, primary_key=True, index=True)
    instructor_id = Column(Integer, ForeignKey("instructors.id"), nullable=False, index=True)
    display_name = Column(String(200), nullable=True)
    phone_number = Column(String(32), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
