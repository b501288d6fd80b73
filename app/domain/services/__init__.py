"""
Domain Services
"""
from app.domain.services.audit_service import AuditService
from app.domain.services.booking_service import BookingService
from app.domain.services.classification_service import ClassificationService
from app.domain.services.context_enrichment_service import ContextEnrichmentService
from app.domain.services.conversation_service import ConversationService
from app.domain.services.draft_orchestrator import (
    DraftOrchestrator,
    OrchestrationResult,
    OrchestratorConfig,
    orchestrate_inbound_draft,
)
from app.domain.services.draft_service import DraftService
from app.domain.services.inbound_message_service import InboundMessageService
from app.domain.services.summary_service import SummaryService

__all__ = [
    "AuditService",
    "BookingService",
    "ClassificationService",
    "ContextEnrichmentService",
    "ConversationService",
    "DraftOrchestrator",
    "DraftService",
    "InboundMessageService",
    "OrchestrationResult",
    "OrchestratorConfig",
    "SummaryService",
    "orchestrate_inbound_draft",
]
