"""
Provider Factory - יצירת לקוח AI לפי הגדרות.
"""
from __future__ import annotations

from app.core.circuit_breaker import get_ai_circuit_breaker
from app.core.config import settings
from app.core.logging import get_logger
from app.domain.services.ai.base import BaseAIClient

logger = get_logger(__name__)

_client: BaseAIClient | None = None


def _create_client(provider_type: str) -> BaseAIClient:
    if provider_type == "heuristic":
        from app.domain.services.ai.heuristic_client import HeuristicAIClient

        return HeuristicAIClient(default_language=settings.DEFAULT_LANGUAGE)

    if provider_type == "http":
        from app.domain.services.ai.http_client import HttpAIClient

        return HttpAIClient(
            base_url=settings.AI_SERVICE_URL,
            api_key=settings.AI_SERVICE_API_KEY,
            circuit_breaker=get_ai_circuit_breaker(),
            request_timeout=max(
                settings.AI_CLASSIFICATION_TIMEOUT_SECONDS,
                settings.AI_SUMMARY_TIMEOUT_SECONDS,
                settings.AI_DRAFT_TIMEOUT_SECONDS,
            ),
        )

    raise ValueError(f"סוג ספק AI לא מוכר: {provider_type}")


def get_ai_client() -> BaseAIClient:
    """לקוח AI יחיד לתהליך, נוצר בקריאה הראשונה"""
    global _client
    if _client is None:
        _client = _create_client(settings.AI_PROVIDER)
        logger.info("ספק AI אותחל", extra_data={"provider": _client.provider_name})
    return _client


async def close_ai_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def reset_ai_client() -> None:
    """איפוס הלקוח, לשימוש בבדיקות בלבד."""
    global _client
    _client = None
