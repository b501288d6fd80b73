"""
ממשק בסיסי ללקוח AI - Dependency Inversion.

כל ספק (היוריסטי מקומי, שירות HTTP חיצוני) מממש את הממשק הזה.
הצנרת תלויה רק בממשק, ומקבלת תמיד AITaskResult מפורש ולא חריגה.
"""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class AIOutcome(str, enum.Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"
    CIRCUIT_OPEN = "circuit_open"


class Intent(str, enum.Enum):
    NEW_BOOKING = "NEW_BOOKING"
    RESCHEDULE = "RESCHEDULE"
    CANCEL = "CANCEL"
    INFO_REQUEST = "INFO_REQUEST"


class RelevanceReason(str, enum.Enum):
    OUT_OF_DOMAIN = "OUT_OF_DOMAIN"
    SMALL_TALK = "SMALL_TALK"
    SPAM = "SPAM"


@dataclass(frozen=True)
class RelevanceResult:
    relevant: bool
    confidence: float
    reason: Optional[RelevanceReason] = None


@dataclass(frozen=True)
class IntentResult:
    intent: Intent
    confidence: float


@dataclass(frozen=True)
class LanguageResult:
    language: str
    confidence: float


@dataclass(frozen=True)
class DraftRequest:
    message_text: str
    intent: Intent
    language: str
    customer_name: Optional[str] = None
    summary_text: Optional[str] = None
    reschedule_verified: bool = False
    reschedule_window: Optional[str] = None
    same_meeting_point: bool = False


@dataclass(frozen=True)
class SummaryRequest:
    mode: str  # "bootstrap" | "incremental_merge"
    previous_summary: Optional[str]
    previous_summary_json: Optional[dict[str, Any]]
    recent_messages: list[dict[str, str]]
    structured_context: dict[str, Any] = field(default_factory=dict)
    booking_snapshot: Optional[dict[str, Any]] = None
    current_intent: Optional[str] = None


@dataclass
class AITaskResult(Generic[T]):
    """
    תוצאה מפורשת של משימת AI.

    ``value`` קיים רק כש-outcome == OK. בכל מקרה אחר ``error_code``
    מתאר את הכשלון, והצנרת ממשיכה בלי השלב הזה.
    """
    task: str
    outcome: AIOutcome
    value: Optional[T] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    latency_ms: float = 0.0
    model: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == AIOutcome.OK


class BaseAIClient(ABC):
    """ממשק אחיד למשימות AI. מימושים רשאים לזרוק, ה-runner ממיר לתוצאה."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """שם הספק לשימוש בלוגים."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """שם המודל שנרשם ב-snapshot."""

    @abstractmethod
    async def classify_relevance(self, text: str, context: dict[str, Any]) -> RelevanceResult:
        """האם ההודעה שייכת לתחום (שיעורים, הזמנות, מדריך)."""

    @abstractmethod
    async def classify_intent(self, text: str, context: dict[str, Any]) -> IntentResult:
        """כוונה מתוך סט סגור, נקרא רק להודעות רלוונטיות."""

    @abstractmethod
    async def detect_language(self, text: str) -> LanguageResult:
        """זיהוי שפה בקוד ISO-639-1."""

    @abstractmethod
    async def summarize(self, request: SummaryRequest) -> str:
        """
        סיכום שיחה. מחזיר JSON גולמי כמחרוזת, הוולידציה אצל הקורא.
        """

    @abstractmethod
    async def draft_reply(self, request: DraftRequest) -> str:
        """טקסט טיוטה גולמי, לפני guardrails."""

    async def aclose(self) -> None:
        """שחרור משאבים, ברירת מחדל: אין."""
