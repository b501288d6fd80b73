"""
Structured Logging Infrastructure

Provides JSON-formatted logging with correlation IDs for request tracing.
Pipeline stages log their outcome and duration through ``log_stage``.
"""
import logging
import json
import re
import sys
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator
from contextvars import ContextVar
from functools import wraps

# Context variable for correlation ID
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

_PHONE_RE = re.compile(r"\+?\d{7,15}")

# שדות ב-extra_data שמכילים מזהה לקוח וממוסכים תמיד בפלט
_IDENTITY_FIELDS = frozenset({"external_identity", "sender", "sender_identity", "phone_number"})


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_entry["extra"] = {
                key: mask_identity(value) if key in _IDENTITY_FIELDS and isinstance(value, str) else value
                for key, value in record.extra_data.items()
            }

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """Logger that accepts an ``extra_data`` dict on every level method"""

    def _log(
        self,
        level: int,
        msg: Any,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra_data: dict[str, Any] | None = None,
    ) -> None:
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        # דילוג על המסגרת הזו כדי ש-funcName/lineno יצביעו על הקורא
        super()._log(level, msg, args, exc_info, extra, stack_info, stacklevel + 1)


logging.setLoggerClass(StructuredLogger)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "instructor-inbox"
) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting for production
        app_name: Application name for log identification
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIdFilter())

    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger(app_name).debug("logging configured")


class CorrelationIdFilter(logging.Filter):
    """Filter that adds correlation_id to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return str(uuid.uuid4())[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current context"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Get current correlation ID, generating and persisting one if not set"""
    cid = correlation_id_var.get()
    if not cid:
        # יצירת ID חדש ושמירתו לשימוש עתידי באותו context
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance"""
    return logging.getLogger(name)  # type: ignore


def mask_identity(value: str | None) -> str:
    """מיסוך מזהה חיצוני (טלפון) ללוגים: שומר 4 ספרות אחרונות בלבד"""
    if not value:
        return ""
    return _PHONE_RE.sub(lambda m: "*" * (len(m.group()) - 4) + m.group()[-4:], value)


@asynccontextmanager
async def log_stage(logger: StructuredLogger, stage: str, **fields: Any) -> AsyncIterator[dict[str, Any]]:
    """
    Time a pipeline stage and log its outcome.

    The yielded dict is merged into the final log line, so callers can record
    an ``outcome`` or any other field. Exceptions are logged and re-raised.
    """
    context: dict[str, Any] = {"stage": stage, **fields}
    started = time.perf_counter()
    try:
        yield context
    except Exception as e:
        context["duration_ms"] = round((time.perf_counter() - started) * 1000, 1)
        context.setdefault("outcome", "error")
        context["error"] = str(e)
        logger.warning(f"Stage {stage} failed", extra_data=context)
        raise
    context["duration_ms"] = round((time.perf_counter() - started) * 1000, 1)
    context.setdefault("outcome", "ok")
    logger.info(f"Stage {stage} finished", extra_data=context)


def log_async_operation(operation_name: str):
    """Decorator for logging async operations with timing"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.perf_counter()

            logger.debug(
                f"Starting {operation_name}",
                extra_data={"operation": operation_name, "status": "started"}
            )

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}: {str(e)}",
                    extra_data={
                        "operation": operation_name,
                        "status": "failed",
                        "duration_seconds": time.perf_counter() - started,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

            logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "status": "completed",
                    "duration_seconds": time.perf_counter() - started
                }
            )
            return result

        return wrapper
    return decorator
