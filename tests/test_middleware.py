"""
בדיקות ל-Middleware, app/core/middleware.py

מכסה:
- _mask_path_pii: מיסוך מספרי טלפון ב-URL
- CorrelationIdMiddleware ו-SecurityHeadersMiddleware
- InboundRateLimitMiddleware: חלון הזזה לגשר ההודעות הנכנסות
- Exception handlers: מבנה השגיאה האחיד
"""
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from app.core.exceptions import InvalidBookingTransitionError, NotFoundException
from app.core.middleware import (
    CorrelationIdMiddleware,
    InboundRateLimitMiddleware,
    SecurityHeadersMiddleware,
    _mask_path_pii,
    setup_exception_handlers,
)


class _Body(BaseModel):
    channel: str


def _build_app(*middlewares: tuple) -> FastAPI:
    """אפליקציה מינימלית עם ה-middleware וה-handlers האמיתיים"""
    app = FastAPI()

    @app.get("/api/health")
    async def health():
        return {"ok": True}

    @app.post("/api/inbound/messages")
    async def inbound():
        return {"ok": True}

    @app.get("/missing")
    async def missing():
        raise NotFoundException("Booking", 77)

    @app.get("/conflict")
    async def conflict():
        raise InvalidBookingTransitionError("cancelled", "confirmed", booking_id=5)

    @app.post("/payload")
    async def payload(body: _Body):
        return {"ok": True}

    @app.get("/boom")
    async def boom():
        raise ValueError("שגיאת בדיקה")

    setup_exception_handlers(app)
    for mw_class, kwargs in middlewares:
        app.add_middleware(mw_class, **kwargs)
    return app


def _client(app: FastAPI) -> AsyncClient:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    return AsyncClient(transport=transport, base_url="http://test")


class TestMaskPathPii:
    @pytest.mark.unit
    def test_masks_phone_in_path(self):
        masked = _mask_path_pii("/api/customers/+393331234567/bookings")
        assert "****" in masked
        assert "3123" not in masked

    @pytest.mark.unit
    def test_short_ids_untouched(self):
        assert _mask_path_pii("/api/bookings/12345/accept") == "/api/bookings/12345/accept"


class TestCorrelationIdMiddleware:
    @pytest.mark.unit
    async def test_incoming_id_is_echoed(self):
        app = _build_app((CorrelationIdMiddleware, {}))
        async with _client(app) as client:
            response = await client.get("/api/health", headers={"X-Correlation-ID": "abc12345"})

        assert response.headers["X-Correlation-ID"] == "abc12345"

    @pytest.mark.unit
    async def test_id_is_generated_when_missing(self):
        app = _build_app((CorrelationIdMiddleware, {}))
        async with _client(app) as client:
            response = await client.get("/api/health")

        assert len(response.headers["X-Correlation-ID"]) == 8


class TestSecurityHeadersMiddleware:
    @pytest.mark.unit
    async def test_production_headers(self):
        app = _build_app((SecurityHeadersMiddleware, {"debug": False}))
        async with _client(app) as client:
            response = await client.get("/api/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]

    @pytest.mark.unit
    async def test_debug_skips_hsts(self):
        app = _build_app((SecurityHeadersMiddleware, {"debug": True}))
        async with _client(app) as client:
            response = await client.get("/api/health")

        assert "Strict-Transport-Security" not in response.headers
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestInboundRateLimitMiddleware:
    @pytest.mark.unit
    async def test_limit_applies_to_inbound_bridge(self):
        app = _build_app((InboundRateLimitMiddleware, {"max_requests": 2, "window_seconds": 60}))
        async with _client(app) as client:
            statuses = [(await client.post("/api/inbound/messages")).status_code for _ in range(3)]
            limited = await client.post("/api/inbound/messages")

        assert statuses == [200, 200, 429]
        assert limited.json()["error"] == "RATE_LIMITED"
        assert limited.headers["Retry-After"] == "60"

    @pytest.mark.unit
    async def test_other_paths_are_not_limited(self):
        app = _build_app((InboundRateLimitMiddleware, {"max_requests": 1, "window_seconds": 60}))
        async with _client(app) as client:
            statuses = {(await client.get("/api/health")).status_code for _ in range(5)}

        assert statuses == {200}

    @pytest.mark.unit
    async def test_forwarded_clients_are_counted_separately(self):
        app = _build_app((InboundRateLimitMiddleware, {"max_requests": 1, "window_seconds": 60}))
        async with _client(app) as client:
            first = await client.post("/api/inbound/messages", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
            second = await client.post("/api/inbound/messages", headers={"X-Forwarded-For": "203.0.113.8"})
            repeat = await client.post("/api/inbound/messages", headers={"X-Forwarded-For": "203.0.113.7"})

        assert [first.status_code, second.status_code, repeat.status_code] == [200, 200, 429]

    @pytest.mark.unit
    def test_cleanup_drops_stale_entries(self):
        middleware = InboundRateLimitMiddleware(FastAPI(), max_requests=5, window_seconds=10)
        middleware._requests["10.0.0.1"] = [100.0, 105.0]
        middleware._requests["10.0.0.2"] = [100.0, 118.0]

        middleware._cleanup_window("10.0.0.1", now=120.0)
        middleware._cleanup_window("10.0.0.2", now=120.0)

        assert "10.0.0.1" not in middleware._requests
        assert middleware._requests["10.0.0.2"] == [118.0]


class TestExceptionHandlers:
    @pytest.mark.unit
    async def test_not_found_shape(self):
        async with _client(_build_app()) as client:
            response = await client.get("/missing")

        assert response.status_code == 404
        assert response.json() == {
            "ok": False,
            "error": "NOT_FOUND",
            "message": "Booking not found: 77",
            "details": {"resource": "Booking", "identifier": "77"},
        }

    @pytest.mark.unit
    async def test_transition_conflict(self):
        async with _client(_build_app()) as client:
            response = await client.get("/conflict")

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_BOOKING_TRANSITION"

    @pytest.mark.unit
    async def test_validation_error_is_400(self):
        async with _client(_build_app()) as client:
            response = await client.post("/payload", json={})

        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "INVALID_PAYLOAD"
        assert body["details"]["errors"][0]["loc"] == ["body", "channel"]

    @pytest.mark.unit
    async def test_unexpected_error_hides_message(self):
        async with _client(_build_app()) as client:
            response = await client.get("/boom")

        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"
        assert "שגיאת בדיקה" not in response.text
