"""
AI Task Abstraction Layer

שכבת הפשטה למשימות AI (סיווג, שפה, סיכום, טיוטה).
הצנרת מקבלת תמיד AITaskResult, לעולם לא חריגה מהספק.
"""
from app.domain.services.ai.base import (
    AIOutcome,
    AITaskResult,
    BaseAIClient,
    DraftRequest,
    Intent,
    IntentResult,
    LanguageResult,
    RelevanceReason,
    RelevanceResult,
    SummaryRequest,
)
from app.domain.services.ai.provider_factory import get_ai_client
from app.domain.services.ai.runner import run_ai_task

__all__ = [
    "AIOutcome",
    "AITaskResult",
    "BaseAIClient",
    "DraftRequest",
    "Intent",
    "IntentResult",
    "LanguageResult",
    "RelevanceReason",
    "RelevanceResult",
    "SummaryRequest",
    "get_ai_client",
    "run_ai_task",
]
