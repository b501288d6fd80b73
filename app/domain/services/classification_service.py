"""
Classification Service - רלוונטיות, כוונה ומדיניות ביטחון

סיווג בשני שלבים תחת תקציב זמן אחד. כשלון או timeout מחזירים None,
והמתזמר ממשיך בלי snapshot ובלי טיוטה.
"""
import enum
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models.ai_snapshot import AISnapshot
from app.domain.services.ai import (
    AITaskResult,
    BaseAIClient,
    Intent,
    IntentResult,
    RelevanceReason,
    RelevanceResult,
    run_ai_task,
)

logger = get_logger(__name__)

RELEVANCE_MIN = 0.70
INTENT_MIN_DRAFT = 0.75
INTENT_MIN_NO_ESCALATION = 0.85


class Decision(str, enum.Enum):
    IGNORE = "IGNORE"
    ESCALATE_ONLY = "ESCALATE_ONLY"
    DRAFT_AND_ESCALATE = "DRAFT_AND_ESCALATE"
    DRAFT_ONLY = "DRAFT_ONLY"


class DecisionReason(str, enum.Enum):
    LOW_RELEVANCE = "LOW_RELEVANCE"
    LOW_INTENT = "LOW_INTENT"
    MEDIUM_CONFIDENCE = "MEDIUM_CONFIDENCE"
    HIGH_CONFIDENCE = "HIGH_CONFIDENCE"


@dataclass(frozen=True)
class ClassificationSnapshot:
    relevant: bool
    relevance_confidence: float
    relevance_reason: Optional[RelevanceReason]
    intent: Optional[Intent]
    intent_confidence: Optional[float]
    model: str


@dataclass(frozen=True)
class EscalationGate:
    allow_draft: bool
    require_escalation: bool


_GATES = {
    Decision.IGNORE: EscalationGate(allow_draft=False, require_escalation=False),
    Decision.ESCALATE_ONLY: EscalationGate(allow_draft=False, require_escalation=True),
    Decision.DRAFT_AND_ESCALATE: EscalationGate(allow_draft=True, require_escalation=True),
    Decision.DRAFT_ONLY: EscalationGate(allow_draft=True, require_escalation=False),
}


def decide_by_confidence(snapshot: ClassificationSnapshot) -> tuple[Decision, DecisionReason]:
    if not snapshot.relevant or snapshot.relevance_confidence < RELEVANCE_MIN:
        return Decision.IGNORE, DecisionReason.LOW_RELEVANCE
    intent_confidence = snapshot.intent_confidence or 0.0
    if intent_confidence < INTENT_MIN_DRAFT:
        return Decision.ESCALATE_ONLY, DecisionReason.LOW_INTENT
    if intent_confidence < INTENT_MIN_NO_ESCALATION:
        return Decision.DRAFT_AND_ESCALATE, DecisionReason.MEDIUM_CONFIDENCE
    return Decision.DRAFT_ONLY, DecisionReason.HIGH_CONFIDENCE


def escalation_gate(decision: Decision) -> EscalationGate:
    return _GATES[decision]


def confidence_band(snapshot: Optional[ClassificationSnapshot]) -> str:
    """low / medium / high, לפי אותם ספים של מדיניות ההחלטה"""
    if snapshot is None:
        return "low"
    decision, _ = decide_by_confidence(snapshot)
    if decision == Decision.DRAFT_ONLY:
        return "high"
    if decision == Decision.DRAFT_AND_ESCALATE:
        return "medium"
    return "low"


class ClassificationService:
    """Service for classifying inbound messages"""

    def __init__(self, db: AsyncSession, client: BaseAIClient, timeout_seconds: float):
        self.db = db
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def _classify(self, message_text: str, context: dict[str, Any]) -> ClassificationSnapshot:
        relevance: RelevanceResult = await self.client.classify_relevance(message_text, context)
        intent: Optional[IntentResult] = None
        if relevance.relevant:
            intent = await self.client.classify_intent(message_text, context)
        return ClassificationSnapshot(
            relevant=relevance.relevant,
            relevance_confidence=relevance.confidence,
            relevance_reason=relevance.reason,
            intent=intent.intent if intent else None,
            intent_confidence=intent.confidence if intent else None,
            model=self.client.model_name,
        )

    async def classify_with_result(
        self,
        message_text: str,
        conversation_context: Optional[dict[str, Any]] = None,
    ) -> AITaskResult[ClassificationSnapshot]:
        return await run_ai_task(
            "classification",
            lambda: self._classify(message_text, conversation_context or {}),
            self.timeout_seconds,
            model=self.client.model_name,
        )

    async def classify(
        self,
        message_text: str,
        conversation_context: Optional[dict[str, Any]] = None,
    ) -> Optional[ClassificationSnapshot]:
        """Snapshot on success, ``None`` on timeout or provider failure"""
        result = await self.classify_with_result(message_text, conversation_context)
        return result.value if result.ok else None

    async def get_snapshot_for_message(self, message_id: int) -> Optional[AISnapshot]:
        result = await self.db.execute(select(AISnapshot).where(AISnapshot.message_id == message_id))
        return result.scalar_one_or_none()

    async def persist_snapshot(
        self,
        message_id: int,
        conversation_id: int,
        snapshot: ClassificationSnapshot,
    ) -> AISnapshot:
        """
        כתיבת snapshot בלתי-ניתן-לשינוי. אם כבר קיים להודעה, מחזירים את הקיים.
        """
        decision, reason = decide_by_confidence(snapshot)
        row = AISnapshot(
            message_id=message_id,
            conversation_id=conversation_id,
            relevant=snapshot.relevant,
            relevance_confidence=snapshot.relevance_confidence,
            relevance_reason=snapshot.relevance_reason.value if snapshot.relevance_reason else None,
            intent=snapshot.intent.value if snapshot.intent else None,
            intent_confidence=snapshot.intent_confidence,
            decision=decision.value,
            decision_reason=reason.value,
            model=snapshot.model,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(row)
            await self.db.commit()
        except IntegrityError:
            existing = await self.get_snapshot_for_message(message_id)
            if existing is None:
                raise
            return existing
        return row


def snapshot_from_row(row: AISnapshot) -> ClassificationSnapshot:
    return ClassificationSnapshot(
        relevant=row.relevant,
        relevance_confidence=row.relevance_confidence,
        relevance_reason=RelevanceReason(row.relevance_reason) if row.relevance_reason else None,
        intent=Intent(row.intent) if row.intent else None,
        intent_confidence=row.intent_confidence,
        model=row.model,
    )

