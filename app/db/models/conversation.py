"""
Conversation Model - שרשור הודעות בין מדריך ללקוח בערוץ מסוים
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Enum as SQLEnum

from app.db.database import Base


class ConversationStatus(str, enum.Enum):
    OPEN = "open"
    REQUIRES_HUMAN = "requires_human"
    CLOSED = "closed"


class ConversationAIState(str, enum.Enum):
    AI_ON = "ai_on"
    AI_PAUSED_BY_HUMAN = "ai_paused_by_human"


class Conversation(Base):
    """
    שיחה - ייחודית לפי (instructor_id, channel, external_identity).

    שיחות לא נמחקות פיזית, רק נסגרות.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "instructor_id", "channel", "external_identity",
            name="uq_conversation_instructor_channel_identity",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    instructor_id = Column(Integer, ForeignKey("instructors.id"), nullable=False, index=True)
    channel = Column(String(32), nullable=False)
    external_identity = Column(String(128), nullable=False)
    customer_id = Column(Integer, ForeignKey("customer_profiles.id"), nullable=True, index=True)
    status = Column(SQLEnum(ConversationStatus), default=ConversationStatus.OPEN, nullable=False)
    ai_state = Column(SQLEnum(ConversationAIState), default=ConversationAIState.AI_ON, nullable=False)
    last_message_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
