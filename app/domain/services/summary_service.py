"""
Summary Service - סיכום שיחה מתגלגל ומדיניות רענון

הפלט של המודל לא נשמר כמו שהוא: הטקסט נחתך ל-500 תווים, וה-JSON
עובר ולידציה מול סכמה וקיצוץ דטרמיניסטי של רשימות עד 700 תווים.
פלט לא תקין מחזיר None והסיכום השמור לא משתנה.
"""
import json
from dataclasses import dataclass
from typing import Any, Literal, Optional

from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger, log_async_operation
from app.db.models.conversation_summary import (
    ConversationSummary,
    MAX_SUMMARY_CHARS,
    MAX_SUMMARY_JSON_CHARS,
)
from app.domain.services.ai import BaseAIClient, SummaryRequest, run_ai_task

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4
MAX_SCALAR_CHARS = 100
CONFIDENCE_BANDS = ("low", "medium", "high")

# סדר הקיצוץ: facts_collected, facts_missing, constraints, next_questions, missing_fields
_LIST_FIELDS = ("facts_collected", "facts_missing", "constraints", "next_questions", "missing_fields")
_TRIM_STEPS = (
    (5, 5, 3, 3, 3),
    (3, 3, 2, 2, 2),
    (2, 2, 1, 1, 1),
    (1, 1, 1, 0, 0),
    (0, 0, 0, 0, 0),
)


class StructuredSummary(BaseModel):
    """סכמת ה-JSON המובנה של הסיכום"""

    customer_intent: str
    current_stage: str
    facts_collected: list[str] = []
    facts_missing: list[str] = []
    constraints: list[str] = []
    next_questions: list[str] = []
    missing_fields: list[str] = []
    confidence_band: Optional[Literal["low", "medium", "high"]] = None

    @field_validator("customer_intent", "current_stage", mode="after")
    @classmethod
    def clip_scalar(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v[:MAX_SCALAR_CHARS]

    @field_validator("facts_collected", "facts_missing", "constraints", "next_questions", "missing_fields", mode="before")
    @classmethod
    def coerce_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("must be a list")
        return [str(item).strip() for item in v if str(item).strip()]

    @field_validator("confidence_band", mode="before")
    @classmethod
    def normalize_band(cls, v: Any) -> Optional[str]:
        """ערך לא מוכר נזרק ולא מפיל את כל הסיכום"""
        if v is None:
            return None
        v = str(v).strip().lower()
        return v if v in CONFIDENCE_BANDS else None


@dataclass(frozen=True)
class SummaryOutput:
    summary_text: str
    summary_json: dict[str, Any]
    confidence_band: Optional[str]


def _serialized_length(payload: dict[str, Any]) -> int:
    return len(json.dumps(payload, ensure_ascii=False))


def fit_summary_json(structured: StructuredSummary) -> dict[str, Any]:
    """
    קיצוץ רשימות בשלבים עד שה-JSON המסודר נכנס ב-700 תווים.

    שדות סקלריים (customer_intent, current_stage) נשמרים, ונחתכים רק
    אם גם בלי רשימות ה-escaping שלהם חורג מהגבול.
    """
    payload = structured.model_dump(exclude_none=True)
    if _serialized_length(payload) <= MAX_SUMMARY_JSON_CHARS:
        return payload
    for caps in _TRIM_STEPS:
        for field_name, cap in zip(_LIST_FIELDS, caps):
            payload[field_name] = payload.get(field_name, [])[:cap]
        if _serialized_length(payload) <= MAX_SUMMARY_JSON_CHARS:
            return payload

    for field_name in ("current_stage", "customer_intent"):
        while _serialized_length(payload) > MAX_SUMMARY_JSON_CHARS and len(payload[field_name]) > 1:
            payload[field_name] = payload[field_name][: len(payload[field_name]) // 2]
    return payload


def validate_summary_output(raw: Optional[str]) -> Optional[SummaryOutput]:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Summary output is not valid JSON")
        return None
    if not isinstance(data, dict):
        logger.warning("Summary output is not a JSON object")
        return None

    summary_text = str(data.pop("summary_text", "") or "").strip()
    if not summary_text:
        return None

    try:
        structured = StructuredSummary.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "Summary output failed schema validation",
            extra_data={"errors": e.error_count()},
        )
        return None

    return SummaryOutput(
        summary_text=summary_text[:MAX_SUMMARY_CHARS],
        summary_json=fit_summary_json(structured),
        confidence_band=structured.confidence_band,
    )


def should_update_summary(
    existing: Optional[ConversationSummary],
    message_count: int,
    current_intent: Optional[str],
    booking_state: Optional[str],
    pending_chars: int,
    message_threshold: int = 10,
    token_budget: int = 2000,
) -> tuple[bool, Optional[str]]:
    """מחזיר (לעדכן?, סיבה)"""
    if existing is None:
        return True, "bootstrap"
    if message_count - (existing.message_count or 0) >= message_threshold:
        return True, "message_threshold"
    if current_intent and current_intent != existing.last_intent:
        return True, "intent_changed"
    if booking_state and booking_state != existing.last_booking_state:
        return True, "booking_state_changed"
    if pending_chars // CHARS_PER_TOKEN > token_budget:
        return True, "token_budget_exceeded"
    return False, None


class SummaryService:
    """Service for generating and storing conversation summaries"""

    def __init__(
        self,
        db: AsyncSession,
        client: BaseAIClient,
        timeout_seconds: float,
        message_threshold: int = 10,
        token_budget: int = 2000,
    ):
        self.db = db
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.message_threshold = message_threshold
        self.token_budget = token_budget

    async def generate(
        self,
        previous_summary: Optional[str],
        recent_messages: list[dict[str, str]],
        structured_context: Optional[dict[str, Any]] = None,
        booking_snapshot: Optional[dict[str, Any]] = None,
        current_intent: Optional[str] = None,
        previous_summary_json: Optional[dict[str, Any]] = None,
    ) -> Optional[SummaryOutput]:
        """
        Bootstrap or merge a summary. ``None`` on timeout, provider error
        or output that does not validate.
        """
        request = SummaryRequest(
            mode="incremental_merge" if previous_summary else "bootstrap",
            previous_summary=previous_summary,
            previous_summary_json=previous_summary_json,
            recent_messages=recent_messages,
            structured_context=structured_context or {},
            booking_snapshot=booking_snapshot,
            current_intent=current_intent,
        )
        result = await run_ai_task(
            "summary",
            lambda: self.client.summarize(request),
            self.timeout_seconds,
            model=self.client.model_name,
        )
        if not result.ok:
            return None
        return validate_summary_output(result.value)

    async def store(
        self,
        conversation_id: int,
        output: SummaryOutput,
        message_count: int,
        intent: Optional[str],
        booking_state: Optional[str],
    ) -> ConversationSummary:
        summary = await self.db.get(ConversationSummary, conversation_id)
        if summary is None:
            summary = ConversationSummary(conversation_id=conversation_id, version=1)
            self.db.add(summary)
        else:
            summary.version = (summary.version or 0) + 1
        summary.summary_text = output.summary_text
        summary.summary_json = output.summary_json
        summary.confidence_band = output.confidence_band
        summary.message_count = message_count
        summary.last_intent = intent
        summary.last_booking_state = booking_state
        await self.db.commit()
        return summary

    @log_async_operation("summary_refresh")
    async def maybe_refresh(
        self,
        conversation_id: int,
        recent_messages: list[dict[str, str]],
        message_count: int,
        structured_context: Optional[dict[str, Any]] = None,
        booking_snapshot: Optional[dict[str, Any]] = None,
        current_intent: Optional[str] = None,
    ) -> Optional[ConversationSummary]:
        """מחזיר את הסיכום השמור אם עודכן, אחרת None"""
        existing = await self.db.get(ConversationSummary, conversation_id)
        booking_state = booking_snapshot.get("status") if booking_snapshot else None
        pending_chars = sum(len(m.get("text") or "") for m in recent_messages)

        update, reason = should_update_summary(
            existing,
            message_count,
            current_intent,
            booking_state,
            pending_chars,
            self.message_threshold,
            self.token_budget,
        )
        if not update:
            return None

        output = await self.generate(
            previous_summary=existing.summary_text if existing else None,
            previous_summary_json=existing.summary_json if existing else None,
            recent_messages=recent_messages,
            structured_context=structured_context,
            booking_snapshot=booking_snapshot,
            current_intent=current_intent,
        )
        if output is None:
            logger.info(
                "Summary not updated, generation unavailable",
                extra_data={"conversation_id": conversation_id, "trigger": reason},
            )
            return None

        stored = await self.store(conversation_id, output, message_count, current_intent, booking_state)
        logger.info(
            "Conversation summary stored",
            extra_data={"conversation_id": conversation_id, "trigger": reason, "version": stored.version},
        )
        return stored
