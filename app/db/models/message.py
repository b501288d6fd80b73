"""
Message Model - הודעות נכנסות ויוצאות בשיחה
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.types import JSON

from app.db.database import Base


class MessageDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Message(Base):
    """
    הודעה בודדת.

    האילוץ הייחודי על (conversation_id, external_message_id) הוא מנגנון
    ה-dedup היחיד למסירה חוזרת. ערכי NULL לא מתנגשים זה בזה.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint(
            "conversation_id", "external_message_id",
            name="uq_message_conversation_external_id",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    channel = Column(String(32), nullable=False)
    direction = Column(SQLEnum(MessageDirection), nullable=False)
    external_message_id = Column(String(255), nullable=True)
    sender_identity = Column(String(128), nullable=True)
    text = Column(Text, nullable=False, default="")
    raw_payload = Column(JSON, nullable=True)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
