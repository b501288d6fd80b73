"""
AI Task Runner - הרצת משימת AI תחת timeout בלי לזרוק לעולם

כל קריאה לספק עוברת כאן. ה-runner מחזיר AITaskResult עם outcome מפורש,
כך שהצנרת מחליטה לפי ערך ולא לפי try/except פזורים.
"""
import asyncio
import time
from typing import Awaitable, Callable, TypeVar

import httpx

from app.core.exceptions import CircuitBreakerOpenError, ErrorCode, SoftAIFailure
from app.core.logging import get_logger
from app.domain.services.ai.base import AIOutcome, AITaskResult

logger = get_logger(__name__)

T = TypeVar("T")


async def run_ai_task(
    task: str,
    call: Callable[[], Awaitable[T]],
    timeout_seconds: float,
    model: str | None = None,
) -> AITaskResult[T]:
    """
    Await ``call()`` bounded by ``timeout_seconds``.

    Returns an AITaskResult in every case. Only task cancellation
    propagates, since that belongs to the caller.
    """
    started = time.perf_counter()

    def _elapsed() -> float:
        return round((time.perf_counter() - started) * 1000, 1)

    try:
        value = await asyncio.wait_for(call(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            f"AI task {task} timed out",
            extra_data={"task": task, "timeout_seconds": timeout_seconds},
        )
        return AITaskResult(
            task=task,
            outcome=AIOutcome.TIMEOUT,
            error_code=ErrorCode.AI_TIMEOUT.value,
            error_message=f"timed out after {timeout_seconds}s",
            latency_ms=_elapsed(),
            model=model,
        )
    except CircuitBreakerOpenError as e:
        logger.warning(
            f"AI task {task} rejected, circuit open",
            extra_data={"task": task, "details": e.details},
        )
        return AITaskResult(
            task=task,
            outcome=AIOutcome.CIRCUIT_OPEN,
            error_code=e.error_code.value,
            error_message=e.message,
            latency_ms=_elapsed(),
            model=model,
        )
    except SoftAIFailure as e:
        logger.warning(
            f"AI task {task} failed",
            extra_data={"task": task, "error_code": e.error_code.value, "error": e.message},
        )
        return AITaskResult(
            task=task,
            outcome=AIOutcome.ERROR,
            error_code=e.error_code.value,
            error_message=e.message,
            latency_ms=_elapsed(),
            model=model,
        )
    except httpx.HTTPError as e:
        logger.warning(
            f"AI task {task} transport error",
            extra_data={"task": task, "error": str(e)},
        )
        return AITaskResult(
            task=task,
            outcome=AIOutcome.ERROR,
            error_code=ErrorCode.AI_PROVIDER_ERROR.value,
            error_message=str(e),
            latency_ms=_elapsed(),
            model=model,
        )
    except Exception as e:
        # שלב AI לעולם לא מפיל את הצנרת, גם לא בבאג בספק
        logger.warning(
            f"AI task {task} raised unexpectedly",
            extra_data={"task": task, "exception_type": type(e).__name__, "error": str(e)},
            exc_info=True,
        )
        return AITaskResult(
            task=task,
            outcome=AIOutcome.ERROR,
            error_code=ErrorCode.AI_PROVIDER_ERROR.value,
            error_message=f"{type(e).__name__}: {e}",
            latency_ms=_elapsed(),
            model=model,
        )

    logger.debug(
        f"AI task {task} completed",
        extra_data={"task": task, "latency_ms": _elapsed()},
    )
    return AITaskResult(
        task=task,
        outcome=AIOutcome.OK,
        value=value,
        latency_ms=_elapsed(),
        model=model,
    )
