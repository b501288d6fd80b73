"""
שירות בדיקת בריאות: מוכנות לקבל הודעות.

מסד הנתונים הוא התלות הקריטית היחידה. שירות ה-AI עובד ב-fail-open,
לכן מעגל פתוח מדווח כ-degraded ולא מוציא את השירות מה-load balancer.
"""
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.circuit_breaker import CircuitState, get_ai_circuit_breaker
from app.core.feature_gates import FeatureGates
from app.core.logging import get_logger

logger = get_logger(__name__)

STATUS_HEALTHY = "healthy"
STATUS_DEGRADED = "degraded"
STATUS_UNAVAILABLE = "unavailable"

_CHECK_OK = "ok"
_ERROR_DB = "error: db_unavailable"


async def _check_db(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
        return _CHECK_OK
    except (SQLAlchemyError, OSError) as e:
        logger.warning("בדיקת בריאות DB נכשלה", extra_data={"error": str(e)})
        return _ERROR_DB


def _check_ai(gates: FeatureGates) -> str:
    if gates.ai_emergency_disable:
        return "disabled"
    state = get_ai_circuit_breaker().state
    return _CHECK_OK if state == CircuitState.CLOSED else f"circuit_{state.value}"


async def check_readiness(db: AsyncSession, gates: FeatureGates) -> dict[str, Any]:
    """
    Returns the overall status plus one entry per dependency.

    unavailable: the database is down, inbound messages cannot be stored.
    degraded: messages are stored but drafts are not being generated.
    """
    checks = {"db": await _check_db(db), "ai": _check_ai(gates)}

    if checks["db"] != _CHECK_OK:
        status = STATUS_UNAVAILABLE
    elif checks["ai"] != _CHECK_OK:
        status = STATUS_DEGRADED
    else:
        status = STATUS_HEALTHY

    if status != STATUS_HEALTHY:
        logger.warning(f"Readiness check: {status}", extra_data=checks)
    return {"status": status, **checks}
