"""
Conversation Summary Model - סיכום מתגלגל אחד לכל שיחה
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.types import JSON

from app.db.database import Base

MAX_SUMMARY_CHARS = 500
MAX_SUMMARY_JSON_CHARS = 700


class ConversationSummary(Base):
    __tablename__ = "conversation_summaries"

    conversation_id = Column(Integer, ForeignKey("conversations.id"), primary_key=True)
    summary_text = Column(String(MAX_SUMMARY_CHARS), nullable=False)
    summary_json = Column(JSON, nullable=False)
    confidence_band = Column(String(16), nullable=True)
    # מונה הודעות ואחרון intent/סטטוס, משמשים את מדיניות הרענון
    message_count = Column(Integer, nullable=False, default=0)
    last_intent = Column(String(32), nullable=True)
    last_booking_state = Column(String(32), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
