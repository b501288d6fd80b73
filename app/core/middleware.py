"""
FastAPI Middleware

Provides request/response middleware for:
- Correlation ID injection
- Request logging (with PII masking)
- Global error handling
- Security headers
- Rate limiting for the inbound message bridge
"""
import re
import time
from collections import defaultdict
from typing import Callable
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import (
    get_logger,
    mask_identity,
    set_correlation_id,
    get_correlation_id
)
from app.core.exceptions import AppException, ErrorCode

logger = get_logger(__name__)

# מספרי טלפון ב-URL path (למשל external_identity בנתיבי חיפוש)
_PHONE_IN_PATH_RE = re.compile(r"(\+?\d{3})\d{4}(\d{3})")

RATE_LIMITED_PREFIX = "/api/inbound"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID")
        correlation_id = set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


def _mask_path_pii(path: str) -> str:
    """מיסוך מספרי טלפון ב-URL path, מחליף 4 ספרות אמצעיות ב-****"""
    return _PHONE_IN_PATH_RE.sub(r"\1****\2", path)


# נתיבי probe שלא נרשמים בלוג בכל קריאה
_QUIET_PATHS = frozenset({"/health"})


def _client_ip(request: Request) -> str:
    """הגשר יושב מאחורי proxy: ה-hop הראשון ב-X-Forwarded-For הוא הלקוח"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its status and duration; identities are masked"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = {
            "method": request.method,
            "path": _mask_path_pii(request.url.path),
            "query_params": {k: mask_identity(v) for k, v in request.query_params.items()},
            "client_ip": _client_ip(request),
        }

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {fields['path']}",
                extra_data={
                    **fields,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    "error": str(e),
                },
                exc_info=True
            )
            raise

        log = logger.info if response.status_code < 400 else logger.warning
        log(
            f"{request.method} {fields['path']} -> {response.status_code}",
            extra_data={
                **fields,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            }
        )
        return response


async def app_exception_handler(
    request: Request,
    exc: AppException
) -> JSONResponse:
    """Handle application exceptions"""
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": _mask_path_pii(request.url.path),
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": get_correlation_id()}
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """גוף בקשה לא תקין מוחזר כ-400 INVALID_PAYLOAD במבנה השגיאה האחיד"""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.info(
        "Request payload rejected",
        extra_data={"path": _mask_path_pii(request.url.path), "errors": errors}
    )
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "error": ErrorCode.INVALID_PAYLOAD.value,
            "message": "Request payload is invalid",
            "details": {"errors": errors},
        },
        headers={"X-Correlation-ID": get_correlation_id()}
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": _mask_path_pii(request.url.path),
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": ErrorCode.INTERNAL_ERROR.value,
            "message": "An unexpected error occurred",
            "details": {},
        },
        headers={"X-Correlation-ID": get_correlation_id()}
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware להוספת כותרות אבטחה לכל תשובה.

    HSTS ו-CSP מוחלים רק כשהאפליקציה לא במצב DEBUG, כדי לא לחסום פיתוח מקומי ב-HTTP.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._debug = debug

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"

        if not self._debug:
            response.headers["Content-Security-Policy"] = "upgrade-insecure-requests"
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


class InboundRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limiting לגשר ההודעות הנכנסות, sliding window לפי IP.

    חל רק על נתיבים שמתחילים ב-/api/inbound. מחזיר 429 אם חורג.
    """

    def __init__(
        self,
        app: FastAPI,
        *,
        max_requests: int = 100,
        window_seconds: int = 60,
    ) -> None:
        super().__init__(app)
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def _cleanup_window(self, ip: str, now: float) -> None:
        cutoff = now - self._window_seconds
        recent = [ts for ts in self._requests.get(ip, []) if ts >= cutoff]
        if recent:
            self._requests[ip] = recent
        else:
            # מחיקת מפתח ריק, מונע דליפת זיכרון מ-IP חד-פעמיים
            self._requests.pop(ip, None)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        path = request.url.path
        if not path.startswith(RATE_LIMITED_PREFIX):
            return await call_next(request)

        client_ip = _client_ip(request)
        now = time.time()
        self._cleanup_window(client_ip, now)

        if len(self._requests.get(client_ip, [])) >= self._max_requests:
            logger.warning(
                "Rate limit exceeded for inbound bridge",
                extra_data={
                    "client_ip": client_ip,
                    "path": path,
                    "limit": self._max_requests,
                    "window_seconds": self._window_seconds,
                },
            )
            return JSONResponse(
                status_code=429,
                content={
                    "ok": False,
                    "error": "RATE_LIMITED",
                    "message": "Too many requests. Please try again later.",
                    "details": {},
                },
                headers={
                    "Retry-After": str(self._window_seconds),
                    "X-Correlation-ID": get_correlation_id(),
                },
            )

        self._requests[client_ip].append(now)
        return await call_next(request)


def setup_middleware(app: FastAPI) -> None:
    """Setup all middleware for the application"""
    from app.core.config import settings

    # ב-Starlette ה-middleware האחרון שנוסף הוא ה-outermost.
    # סדר עיבוד בקשה: SecurityHeaders -> CorrelationId -> RequestLogging -> RateLimit -> app
    app.add_middleware(
        InboundRateLimitMiddleware,
        max_requests=settings.INBOUND_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.INBOUND_RATE_LIMIT_WINDOW_SECONDS,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup exception handlers"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
