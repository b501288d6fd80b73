"""
Instructor Model - ספקי השירות שמנהלים הזמנות ושיחות
"""
from datetime import datetime
from sqlalchemy import Boolean, Column, Integer, String, DateTime

from app.db.database import Base


class Instructor(Base):
    """מדריך - הבעלים של שיחות והזמנות"""

    __tablename__ = "instructors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=True)
    # הרשמה עצמה מחוץ לשירות, כאן רק הדגל שחוסם גישה לפני השלמתה
    onboarding_completed = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
