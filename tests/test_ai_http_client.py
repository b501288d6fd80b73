"""
בדיקות ללקוח ה-AI מעל HTTP ול-runner

השירות החיצוני מוחלף ב-httpx.MockTransport. כל כשלון צריך להגיע
לצנרת כ-AITaskResult, לעולם לא כחריגה.
"""
import json

import httpx
import pytest

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.domain.services.ai import AIOutcome, DraftRequest, Intent, RelevanceReason, SummaryRequest, run_ai_task
from app.domain.services.ai.http_client import HttpAIClient


def _client(handler, failure_threshold: int = 5) -> HttpAIClient:
    breaker = CircuitBreaker("ai-test", CircuitBreakerConfig(failure_threshold=failure_threshold))
    return HttpAIClient(
        base_url="http://ai.test",
        api_key="secret",
        circuit_breaker=breaker,
        transport=httpx.MockTransport(handler),
    )


def _ok(output: dict, model: str = "tiny-1") -> httpx.Response:
    return httpx.Response(200, json={"output": output, "model": model})


class TestHttpAIClient:
    @pytest.mark.unit
    async def test_relevance_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return _ok({"relevant": False, "confidence": 0.9, "reason": "SPAM"})

        client = _client(handler)
        result = await client.classify_relevance("win a prize", {"channel": "sms"})

        assert result.relevant is False
        assert result.reason == RelevanceReason.SPAM
        assert seen["path"] == "/v1/tasks/relevance"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"] == {"tier": "cheap", "input": {"text": "win a prize", "context": {"channel": "sms"}}}
        assert client.model_name == "tiny-1"
        await client.aclose()

    @pytest.mark.unit
    async def test_draft_uses_strong_tier(self):
        tiers = []

        def handler(request: httpx.Request) -> httpx.Response:
            tiers.append(json.loads(request.content)["tier"])
            return _ok({"text": "Thanks for writing."}, model="big-1")

        client = _client(handler)
        text = await client.draft_reply(DraftRequest(message_text="hi", intent=Intent.INFO_REQUEST, language="en"))

        assert text == "Thanks for writing."
        assert tiers == ["strong"]
        await client.aclose()

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "response,error_code",
        [
            (httpx.Response(429), "AI_RATE_LIMIT"),
            (httpx.Response(500, text="boom"), "AI_PROVIDER_ERROR"),
            (httpx.Response(200, text="not json"), "AI_PARSE_ERROR"),
            (httpx.Response(200, json={"result": {}}), "AI_PARSE_ERROR"),
            (httpx.Response(200, json={"output": {"intent": "FLY_TO_MOON", "confidence": 1}}), "AI_PARSE_ERROR"),
        ],
    )
    async def test_failures_become_soft_results(self, response, error_code):
        client = _client(lambda request: response)

        result = await run_ai_task("intent", lambda: client.classify_intent("x", {}), 1.0)

        assert result.outcome == AIOutcome.ERROR
        assert result.error_code == error_code
        assert result.value is None
        await client.aclose()

    @pytest.mark.unit
    async def test_transport_error_becomes_soft_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        result = await run_ai_task("language", lambda: client.detect_language("ciao"), 1.0)

        assert result.outcome == AIOutcome.ERROR
        assert result.error_code == "AI_PROVIDER_ERROR"
        await client.aclose()

    @pytest.mark.unit
    async def test_circuit_opens_after_repeated_failures(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(503)

        client = _client(handler, failure_threshold=2)
        for _ in range(2):
            await run_ai_task("relevance", lambda: client.classify_relevance("x", {}), 1.0)

        result = await run_ai_task("relevance", lambda: client.classify_relevance("x", {}), 1.0)

        assert result.outcome == AIOutcome.CIRCUIT_OPEN
        assert result.error_code == "AI_CIRCUIT_OPEN"
        assert len(calls) == 2
        await client.aclose()

    @pytest.mark.unit
    async def test_summary_returns_json_text(self):
        client = _client(lambda request: _ok({"summary_text": "s", "customer_intent": "INFO_REQUEST"}))

        raw = await client.summarize(SummaryRequest("bootstrap", None, None, []))

        assert json.loads(raw)["summary_text"] == "s"
        await client.aclose()


class TestRunner:
    @pytest.mark.unit
    async def test_success_records_latency(self):
        async def call():
            return 42

        result = await run_ai_task("demo", call, 1.0, model="m")

        assert result.ok
        assert result.value == 42
        assert result.model == "m"
        assert result.latency_ms >= 0
