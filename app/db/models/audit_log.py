"""
Audit Log Model - לוג ראיות לכל צעד בצנרת ולפעולות אנושיות

רישום בלתי-הפיך. הקריאה נעשית בחלונות "מאז" (since) לצורכי בדיקה וניטור.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, String, Enum as SQLEnum
from sqlalchemy.types import JSON

from app.db.database import Base


class AuditActorType(str, enum.Enum):
    SYSTEM = "system"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class AuditSeverity(str, enum.Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class AuditAction(str, enum.Enum):
    """פעולות הנרשמות בלוג הראיות"""
    INBOUND_MESSAGE_RECEIVED = "inbound_message_received"
    AI_CLASSIFICATION_COMPLETED = "ai_classification_completed"
    AI_CLASSIFICATION_UNAVAILABLE = "ai_classification_unavailable"
    CONTEXT_ENRICHMENT_PERFORMED = "context_enrichment_performed"
    RESCHEDULE_VERIFIED = "reschedule_verified"
    CONVERSATION_SUMMARY_UPDATED = "conversation_summary_updated"
    AI_DRAFT_PROPOSED = "ai_draft_proposed"
    AI_DRAFT_SKIPPED = "ai_draft_skipped"
    AI_DRAFT_USED = "ai_draft_used"
    AI_DRAFT_IGNORED = "ai_draft_ignored"
    CONVERSATION_ESCALATED = "conversation_escalated"
    CONVERSATION_AI_STATE_CHANGED = "conversation_ai_state_changed"
    BOOKING_CREATED = "booking_created"
    BOOKING_STATUS_CHANGED = "booking_status_changed"


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    actor_type = Column(SQLEnum(AuditActorType), nullable=False)
    actor_id = Column(String(64), nullable=True)
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False, index=True)
    severity = Column(SQLEnum(AuditSeverity), default=AuditSeverity.INFO, nullable=False)
    request_id = Column(String(64), nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
