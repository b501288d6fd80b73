"""
AI Draft Model - טיוטת תשובה שמוצעת למדריך
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Enum as SQLEnum

from app.db.database import Base


class DraftState(str, enum.Enum):
    PROPOSED = "proposed"
    USED = "used"
    IGNORED = "ignored"
    EXPIRED = "expired"


class AIDraft(Base):
    """
    טיוטה שנוצרה על ידי ה-AI.

    טיוטה חדשה לא משנה את הקודמות. טיוטה proposed שאינה האחרונה בשיחה,
    או שעבר זמן ה-TTL שלה, נחשבת expired בפועל (ראה DraftService.effective_state).
    """

    __tablename__ = "ai_drafts"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False)
    snapshot_id = Column(Integer, ForeignKey("ai_snapshots.id"), nullable=True)
    text = Column(Text, nullable=False)
    language = Column(String(8), nullable=True)
    model = Column(String(64), nullable=False)
    state = Column(SQLEnum(DraftState), default=DraftState.PROPOSED, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    acted_at = Column(DateTime, nullable=True)
