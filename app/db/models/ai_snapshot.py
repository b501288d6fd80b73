"""
AI Snapshot Model - תוצאת סיווג לא-ניתנת-לשינוי, אחת לכל הודעה
"""
from datetime import datetime
from sqlalchemy import Boolean, Column, Integer, String, DateTime, Float, ForeignKey

from app.db.database import Base


class AISnapshot(Base):
    __tablename__ = "ai_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    # unique: מסירה חוזרת של אותה הודעה לא יוצרת snapshot נוסף
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, unique=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    relevant = Column(Boolean, nullable=False)
    relevance_confidence = Column(Float, nullable=False)
    relevance_reason = Column(String(32), nullable=True)
    intent = Column(String(32), nullable=True)
    intent_confidence = Column(Float, nullable=True)
    decision = Column(String(32), nullable=False)
    decision_reason = Column(String(32), nullable=False)
    model = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
