"""
Database Models
"""
from app.db.models.instructor import Instructor
from app.db.models.customer_profile import CustomerProfile
from app.db.models.conversation import Conversation, ConversationStatus, ConversationAIState
from app.db.models.message import Message, MessageDirection
from app.db.models.ai_snapshot import AISnapshot
from app.db.models.ai_draft import AIDraft, DraftState
from app.db.models.conversation_summary import ConversationSummary
from app.db.models.booking import Booking, BookingStatus
from app.db.models.booking_audit import BookingAudit, AuditActor
from app.db.models.audit_log import AuditLog, AuditAction, AuditActorType, AuditSeverity

__all__ = [
    "Instructor",
    "CustomerProfile",
    "Conversation",
    "ConversationStatus",
    "ConversationAIState",
    "Message",
    "MessageDirection",
    "AISnapshot",
    "AIDraft",
    "DraftState",
    "ConversationSummary",
    "Booking",
    "BookingStatus",
    "BookingAudit",
    "AuditActor",
    "AuditLog",
    "AuditAction",
    "AuditActorType",
    "AuditSeverity",
]
