"""
HTTP AI Client - מימוש ממשק BaseAIClient מעל שירות AI חיצוני.

כל משימה היא POST ל-{AI_SERVICE_URL}/v1/tasks/{task} עם גוף JSON.
אין retry: לכל שלב תקציב זמן קצר, וכשלון חוזר פותח את ה-circuit breaker.
"""
from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.exceptions import ErrorCode, SoftAIFailure
from app.core.logging import get_logger
from app.domain.services.ai.base import (
    BaseAIClient,
    DraftRequest,
    Intent,
    IntentResult,
    LanguageResult,
    RelevanceReason,
    RelevanceResult,
    SummaryRequest,
)

logger = get_logger(__name__)

# שכבת מודלים: סיווג וסיכום במודל זול, טיוטה במודל חזק
TASK_TIERS = {
    "relevance": "cheap",
    "intent": "cheap",
    "language": "cheap",
    "summary": "cheap",
    "draft": "strong",
}


class HttpAIClient(BaseAIClient):
    """AI tasks executed by a remote service, guarded by a circuit breaker"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        circuit_breaker: CircuitBreaker,
        request_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._circuit_breaker = circuit_breaker
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=request_timeout,
            transport=transport,
        )
        self._model = "remote"

    @property
    def provider_name(self) -> str:
        return "http"

    @property
    def model_name(self) -> str:
        return self._model

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, task: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(
            f"/v1/tasks/{task}",
            json={"tier": TASK_TIERS[task], "input": payload},
        )
        if response.status_code == 429:
            raise SoftAIFailure(
                f"AI service rate limited task {task}",
                error_code=ErrorCode.AI_RATE_LIMIT,
                details={"task": task, "status_code": 429},
            )
        if response.status_code != 200:
            raise SoftAIFailure(
                f"AI service returned status {response.status_code} for {task}",
                details={"task": task, "status_code": response.status_code, "response_text": response.text[:500]},
            )
        try:
            body = response.json()
        except ValueError as e:
            raise SoftAIFailure(
                f"AI service returned non-JSON body for {task}",
                error_code=ErrorCode.AI_PARSE_ERROR,
                details={"task": task},
            ) from e
        if not isinstance(body, dict) or not isinstance(body.get("output"), dict):
            raise SoftAIFailure(
                f"AI service response for {task} has no output object",
                error_code=ErrorCode.AI_PARSE_ERROR,
                details={"task": task},
            )
        if body.get("model"):
            self._model = str(body["model"])
        return body["output"]

    async def _call(self, task: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._circuit_breaker.execute(self._post, task, payload)

    async def classify_relevance(self, text: str, context: dict[str, Any]) -> RelevanceResult:
        output = await self._call("relevance", {"text": text, "context": context})
        try:
            reason = output.get("reason")
            return RelevanceResult(
                relevant=bool(output["relevant"]),
                confidence=float(output["confidence"]),
                reason=RelevanceReason(reason) if reason else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SoftAIFailure("malformed relevance output", ErrorCode.AI_PARSE_ERROR) from e

    async def classify_intent(self, text: str, context: dict[str, Any]) -> IntentResult:
        output = await self._call("intent", {"text": text, "context": context})
        try:
            return IntentResult(intent=Intent(output["intent"]), confidence=float(output["confidence"]))
        except (KeyError, TypeError, ValueError) as e:
            raise SoftAIFailure("malformed intent output", ErrorCode.AI_PARSE_ERROR) from e

    async def detect_language(self, text: str) -> LanguageResult:
        output = await self._call("language", {"text": text})
        try:
            return LanguageResult(language=str(output["language"]).lower()[:8], confidence=float(output["confidence"]))
        except (KeyError, TypeError, ValueError) as e:
            raise SoftAIFailure("malformed language output", ErrorCode.AI_PARSE_ERROR) from e

    async def summarize(self, request: SummaryRequest) -> str:
        output = await self._call("summary", asdict(request))
        # השירות מחזיר אובייקט; הוולידציה על המבנה נעשית ב-SummaryService
        return json.dumps(output, ensure_ascii=False, default=str)

    async def draft_reply(self, request: DraftRequest) -> str:
        payload = asdict(request)
        payload["intent"] = request.intent.value
        output = await self._call("draft", payload)
        text = output.get("text")
        if not isinstance(text, str):
            raise SoftAIFailure("malformed draft output", ErrorCode.AI_PARSE_ERROR)
        return text
