"""
Draft Orchestrator - צנרת הטיוטה להודעה נכנסת

שלבים רציפים: שערים, סיווג, שפה, העשרת הקשר, סיכום, החלטה, טיוטה.
כל שלב מוגבל בזמן ונכשל "פתוח": כשלון נרשם בלוג ובראיות, והצנרת
ממשיכה או עוצרת בלי טיוטה. שום חריגה משלב AI לא יוצאת מכאן.
"""
import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.feature_gates import FeatureGates
from app.core.logging import get_logger, log_stage, set_correlation_id
from app.db.models.ai_draft import AIDraft
from app.db.models.audit_log import AuditAction, AuditSeverity
from app.db.models.conversation import Conversation, ConversationAIState
from app.db.models.message import Message
from app.domain.services.ai import BaseAIClient, DraftRequest, Intent, get_ai_client, run_ai_task
from app.domain.services.audit_service import AuditService, CONVERSATION_ENTITY
from app.domain.services.classification_service import (
    ClassificationService,
    ClassificationSnapshot,
    Decision,
    confidence_band,
    decide_by_confidence,
    escalation_gate,
    snapshot_from_row,
)
from app.domain.services.context_enrichment_service import ContextEnrichmentService, EnrichedContext
from app.domain.services.conversation_service import ConversationService
from app.domain.services.draft_guardrails import sanitize_draft
from app.domain.services.draft_service import DraftService
from app.domain.services.inbound_message_service import InboundMessageService
from app.domain.services.summary_service import SummaryService

logger = get_logger(__name__)

# CANCEL לא מקבל טיוטה: ביטול תמיד עובר למדריך
OPERATIVE_INTENTS = frozenset({Intent.NEW_BOOKING, Intent.RESCHEDULE, Intent.INFO_REQUEST})
MIN_INTENT_CONFIDENCE = 0.6
RECENT_MESSAGES_LIMIT = 20


@dataclass(frozen=True)
class OrchestratorConfig:
    gates: FeatureGates = field(default_factory=FeatureGates)
    classification_timeout: float = 2.0
    language_timeout: float = 1.0
    enrichment_timeout: float = 2.0
    summary_timeout: float = 3.0
    draft_timeout: float = 4.0
    draft_ttl_hours: int = 24
    draft_max_chars: int = 600
    default_language: str = "it"
    summary_message_threshold: int = 10
    summary_token_budget: int = 2000

    @classmethod
    def from_settings(
        cls,
        source: Settings = settings,
        gates: Optional[FeatureGates] = None,
    ) -> "OrchestratorConfig":
        return cls(
            gates=gates or FeatureGates.from_settings(source),
            classification_timeout=source.AI_CLASSIFICATION_TIMEOUT_SECONDS,
            language_timeout=source.AI_LANGUAGE_TIMEOUT_SECONDS,
            enrichment_timeout=source.ENRICHMENT_TIMEOUT_SECONDS,
            summary_timeout=source.AI_SUMMARY_TIMEOUT_SECONDS,
            draft_timeout=source.AI_DRAFT_TIMEOUT_SECONDS,
            draft_ttl_hours=source.DRAFT_TTL_HOURS,
            draft_max_chars=source.DRAFT_MAX_CHARS,
            default_language=source.DEFAULT_LANGUAGE,
            summary_message_threshold=source.SUMMARY_MESSAGE_THRESHOLD,
            summary_token_budget=source.SUMMARY_TOKEN_BUDGET,
        )


@dataclass
class OrchestrationResult:
    snapshot_id: Optional[int] = None
    draft_generated: bool = False
    draft_id: Optional[int] = None
    confidence_band: str = "low"
    decision: Optional[str] = None
    intent: Optional[str] = None
    reschedule_verified: bool = False
    reschedule_booking_id: Optional[int] = None
    customer_context_used: bool = False
    summary_used: bool = False
    detected_language: Optional[str] = None
    skip_reason: Optional[str] = None
    suggested_actions: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DraftOrchestrator:
    """Runs one inbound message through the draft pipeline"""

    def __init__(
        self,
        db: AsyncSession,
        client: Optional[BaseAIClient] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.db = db
        self.client = client or get_ai_client()
        self.config = config or OrchestratorConfig.from_settings()
        self.audit = AuditService(db)
        self.messages = InboundMessageService(db)
        self.conversations = ConversationService(db)
        self.classifier = ClassificationService(db, self.client, self.config.classification_timeout)
        self.summaries = SummaryService(
            db,
            self.client,
            self.config.summary_timeout,
            self.config.summary_message_threshold,
            self.config.summary_token_budget,
        )
        self.drafts = DraftService(db, self.config.draft_ttl_hours)

    async def _skip(
        self,
        result: OrchestrationResult,
        conversation_id: int,
        reason: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> OrchestrationResult:
        result.skip_reason = reason
        await self.audit.record_safe(
            action=AuditAction.AI_DRAFT_SKIPPED,
            entity_type=CONVERSATION_ENTITY,
            entity_id=conversation_id,
            payload={"reason": reason, **(payload or {})},
        )
        logger.info(
            "Draft skipped",
            extra_data={"conversation_id": conversation_id, "reason": reason},
        )
        return result

    def _gate_reason(self, conversation: Conversation) -> Optional[str]:
        gates = self.config.gates
        if gates.ai_emergency_disable:
            return "ai_emergency_disabled"
        if not gates.is_pilot(conversation.instructor_id):
            return "instructor_not_in_pilot"
        if conversation.ai_state == ConversationAIState.AI_PAUSED_BY_HUMAN:
            return "ai_paused_by_human"
        return None

    async def _replay(self, result: OrchestrationResult, message: Message, snapshot_row) -> OrchestrationResult:
        """הודעה שכבר עובדה: מחזירים את התוצאה השמורה בלי לרוץ שוב"""
        snapshot = snapshot_from_row(snapshot_row)
        result.snapshot_id = snapshot_row.id
        result.decision = snapshot_row.decision
        result.intent = snapshot_row.intent
        result.confidence_band = confidence_band(snapshot)
        draft = (
            await self.db.execute(
                select(AIDraft)
                .where(AIDraft.message_id == message.id)
                .order_by(AIDraft.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if draft is not None:
            result.draft_generated = True
            result.draft_id = draft.id
        result.skip_reason = "already_processed"
        return result

    async def _detect_language(self, message_text: str, hint: Optional[str]) -> str:
        if hint:
            return hint
        outcome = await run_ai_task(
            "language",
            lambda: self.client.detect_language(message_text),
            self.config.language_timeout,
            model=self.client.model_name,
        )
        if outcome.ok:
            return outcome.value.language
        return self.config.default_language

    async def _enrich(
        self,
        conversation: Conversation,
        message_text: str,
        intent: Optional[Intent],
    ) -> EnrichedContext:
        try:
            return await asyncio.wait_for(
                ContextEnrichmentService(self.db).enrich(conversation, message_text, intent),
                timeout=self.config.enrichment_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Context enrichment timed out",
                extra_data={"conversation_id": conversation.id, "timeout": self.config.enrichment_timeout},
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "Context enrichment failed",
                extra_data={"conversation_id": conversation.id, "error": str(e)},
            )
        except Exception as e:
            # באג בהעשרה או בפענוח לא מפיל את הצנרת, ממשיכים בלי הקשר
            logger.warning(
                "Context enrichment raised unexpectedly",
                extra_data={
                    "conversation_id": conversation.id,
                    "exception_type": type(e).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
        return EnrichedContext(failed_lookups=["all"])

    async def _refresh_summary(
        self,
        conversation_id: int,
        enriched: EnrichedContext,
        intent: Optional[Intent],
    ) -> None:
        try:
            recent = await self.messages.recent_messages(conversation_id, RECENT_MESSAGES_LIMIT)
            message_count = await self.messages.count_messages(conversation_id)
            stored = await self.summaries.maybe_refresh(
                conversation_id,
                recent_messages=[{"direction": m.direction.value, "text": m.text or ""} for m in recent],
                message_count=message_count,
                structured_context=enriched.structured(),
                booking_snapshot=enriched.next_booking.to_dict() if enriched.next_booking else None,
                current_intent=intent.value if intent else None,
            )
        except SQLAlchemyError:
            # maybe_refresh כבר רשם את השגיאה
            await self.db.rollback()
            return
        except Exception as e:
            logger.warning(
                "Summary refresh raised unexpectedly",
                extra_data={
                    "conversation_id": conversation_id,
                    "exception_type": type(e).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
            return
        if stored is not None:
            await self.audit.record_safe(
                action=AuditAction.CONVERSATION_SUMMARY_UPDATED,
                entity_type=CONVERSATION_ENTITY,
                entity_id=conversation_id,
                payload={"version": stored.version, "message_count": stored.message_count},
            )

    def _suggested_actions(
        self,
        intent: Optional[Intent],
        enriched: EnrichedContext,
        require_escalation: bool,
    ) -> list[dict[str, Any]]:
        actions: list[dict[str, Any]] = []
        if intent == Intent.RESCHEDULE and enriched.reschedule_verified:
            to_window = enriched.reschedule_request.to_window if enriched.reschedule_request else None
            actions.append({
                "action": "propose_reschedule",
                "booking_id": enriched.reschedule_booking_id,
                "to_window": to_window.label() if to_window else None,
            })
        if intent == Intent.CANCEL:
            actions.append({"action": "review_cancellation", "booking_id": enriched.reschedule_booking_id})
        if require_escalation:
            actions.append({"action": "escalate_to_human"})
        return actions

    async def _escalate(self, conversation: Conversation, decision: Decision) -> None:
        try:
            await self.conversations.mark_requires_human(conversation)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "Failed to mark conversation for human handling",
                extra_data={"conversation_id": conversation.id, "error": str(e)},
            )
            return
        await self.audit.record_safe(
            action=AuditAction.CONVERSATION_ESCALATED,
            entity_type=CONVERSATION_ENTITY,
            entity_id=conversation.id,
            payload={"decision": decision.value},
        )

    async def orchestrate(
        self,
        conversation_id: int,
        external_message_id: str,
        message_text: str,
        channel: str,
        language: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> OrchestrationResult:
        if request_id:
            set_correlation_id(request_id)
        result = OrchestrationResult()

        # 0. שערים
        conversation = await self.db.get(Conversation, conversation_id)
        if conversation is None:
            logger.warning("Orchestration for unknown conversation", extra_data={"conversation_id": conversation_id})
            result.skip_reason = "conversation_not_found"
            return result
        gate_reason = self._gate_reason(conversation)
        if gate_reason:
            return await self._skip(result, conversation_id, gate_reason)

        # 1. איתור ההודעה ובדיקת עיבוד קודם
        message = await self.messages.find_inbound(conversation_id, external_message_id)
        if message is None:
            return await self._skip(result, conversation_id, "message_not_found")
        existing = await self.classifier.get_snapshot_for_message(message.id)
        if existing is not None:
            return await self._replay(result, message, existing)

        # 2. סיווג
        async with log_stage(logger, "classification", conversation_id=conversation_id) as stage:
            classified = await self.classifier.classify_with_result(message_text, {"channel": channel})
            stage["outcome"] = classified.outcome.value
        if not classified.ok:
            await self.audit.record_safe(
                action=AuditAction.AI_CLASSIFICATION_UNAVAILABLE,
                entity_type=CONVERSATION_ENTITY,
                entity_id=conversation_id,
                severity=AuditSeverity.WARN,
                payload={"message_id": message.id, "outcome": classified.outcome.value, "error_code": classified.error_code},
            )
            result.skip_reason = "classification_unavailable"
            return result

        snapshot: ClassificationSnapshot = classified.value
        decision, decision_reason = decide_by_confidence(snapshot)
        result.decision = decision.value
        result.intent = snapshot.intent.value if snapshot.intent else None
        result.confidence_band = confidence_band(snapshot)
        try:
            row = await self.classifier.persist_snapshot(message.id, conversation_id, snapshot)
            result.snapshot_id = row.id
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "Snapshot persistence failed",
                extra_data={"conversation_id": conversation_id, "message_id": message.id, "error": str(e)},
            )
        await self.audit.record_safe(
            action=AuditAction.AI_CLASSIFICATION_COMPLETED,
            entity_type=CONVERSATION_ENTITY,
            entity_id=conversation_id,
            payload={
                "message_id": message.id,
                "snapshot_id": result.snapshot_id,
                "relevant": snapshot.relevant,
                "intent": result.intent,
                "decision": decision.value,
                "decision_reason": decision_reason.value,
                "latency_ms": classified.latency_ms,
            },
        )

        # 3. שפה
        async with log_stage(logger, "language", conversation_id=conversation_id) as stage:
            result.detected_language = await self._detect_language(message_text, language)
            stage["language"] = result.detected_language

        # 4. העשרת הקשר
        async with log_stage(logger, "enrichment", conversation_id=conversation_id) as stage:
            enriched = await self._enrich(conversation, message_text, snapshot.intent)
            stage["failed_lookups"] = enriched.failed_lookups
        result.customer_context_used = enriched.customer_context_used
        result.summary_used = enriched.summary_used
        result.reschedule_verified = enriched.reschedule_verified
        result.reschedule_booking_id = enriched.reschedule_booking_id
        await self.audit.record_safe(
            action=AuditAction.CONTEXT_ENRICHMENT_PERFORMED,
            entity_type=CONVERSATION_ENTITY,
            entity_id=conversation_id,
            payload={
                "customer_context_used": enriched.customer_context_used,
                "summary_used": enriched.summary_used,
                "upcoming_bookings": len(enriched.upcoming_bookings),
                "failed_lookups": enriched.failed_lookups,
            },
        )
        if enriched.reschedule_verified:
            await self.audit.record_safe(
                action=AuditAction.RESCHEDULE_VERIFIED,
                entity_type=CONVERSATION_ENTITY,
                entity_id=conversation_id,
                payload={"booking_id": enriched.reschedule_booking_id, "intent": result.intent},
            )

        # 5. סיכום
        async with log_stage(logger, "summary", conversation_id=conversation_id):
            await self._refresh_summary(conversation_id, enriched, snapshot.intent)

        # 6. החלטה
        gate = escalation_gate(decision)
        result.suggested_actions = self._suggested_actions(snapshot.intent, enriched, gate.require_escalation)
        if gate.require_escalation:
            await self._escalate(conversation, decision)

        if not gate.allow_draft:
            return await self._skip(result, conversation_id, "decision_blocks_draft", {"decision": decision.value})
        if snapshot.intent not in OPERATIVE_INTENTS:
            return await self._skip(result, conversation_id, "intent_not_operative", {"intent": result.intent})
        if (snapshot.intent_confidence or 0.0) < MIN_INTENT_CONFIDENCE:
            return await self._skip(result, conversation_id, "intent_confidence_too_low")

        # 7. טיוטה
        verified = enriched.reschedule_verified and snapshot.intent == Intent.RESCHEDULE
        request = enriched.reschedule_request
        draft_request = DraftRequest(
            message_text=message_text,
            intent=snapshot.intent,
            language=result.detected_language,
            customer_name=enriched.customer_name,
            summary_text=enriched.prior_summary,
            reschedule_verified=verified,
            reschedule_window=request.to_window.label() if verified and request and request.to_window else None,
            same_meeting_point=bool(request and request.same_meeting_point),
        )
        async with log_stage(logger, "draft", conversation_id=conversation_id) as stage:
            drafted = await run_ai_task(
                "draft",
                lambda: self.client.draft_reply(draft_request),
                self.config.draft_timeout,
                model=self.client.model_name,
            )
            stage["outcome"] = drafted.outcome.value
        if not drafted.ok:
            return await self._skip(
                result, conversation_id, "draft_unavailable", {"outcome": drafted.outcome.value}
            )

        checked = sanitize_draft(
            drafted.value,
            snapshot.intent,
            result.detected_language,
            reschedule_verified=verified,
            max_chars=self.config.draft_max_chars,
        )
        if checked.blocked:
            return await self._skip(
                result, conversation_id, "guardrail_blocked", {"rules": checked.blocking_rules}
            )

        try:
            draft = await self.drafts.propose(
                conversation_id=conversation_id,
                message_id=message.id,
                text=checked.safe_text,
                model=self.client.model_name,
                language=result.detected_language,
                snapshot_id=result.snapshot_id,
                payload={"reschedule_verified": verified, "was_truncated": checked.was_truncated},
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "Draft persistence failed",
                extra_data={"conversation_id": conversation_id, "error": str(e)},
            )
            return await self._skip(result, conversation_id, "draft_persist_failed")

        result.draft_generated = True
        result.draft_id = draft.id
        logger.info(
            "Draft proposed",
            extra_data={"conversation_id": conversation_id, "draft_id": draft.id, "decision": decision.value},
        )
        return result


async def orchestrate_inbound_draft(
    db: AsyncSession,
    conversation_id: int,
    external_message_id: str,
    message_text: str,
    channel: str,
    language: Optional[str] = None,
    request_id: Optional[str] = None,
    client: Optional[BaseAIClient] = None,
    config: Optional[OrchestratorConfig] = None,
) -> OrchestrationResult:
    return await DraftOrchestrator(db, client, config).orchestrate(
        conversation_id=conversation_id,
        external_message_id=external_message_id,
        message_text=message_text,
        channel=channel,
        language=language,
        request_id=request_id,
    )
