"""
אימות מפתח API עבור endpoints פנימיים (קליטת הודעות, ראיות).

שימוש:
    @router.post("/inbound/messages")
    async def inbound(
        _: None = Depends(require_internal_api_key),
    ):
        ...
"""
import hmac

from fastapi import Depends
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.core.exceptions import AppException, ErrorCode, UnauthorizedException
from app.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


async def require_internal_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    ולידציה של מפתח API פנימי.

    זורק 401 אם המפתח חסר, 403 אם לא תואם.
    אם INTERNAL_API_KEY לא מוגדר בסביבה, הגישה חסומה לחלוטין.
    """
    if not settings.INTERNAL_API_KEY:
        logger.warning("גישה ל-internal endpoint נדחתה, INTERNAL_API_KEY לא מוגדר")
        raise AppException(
            message="INTERNAL_API_KEY is not configured",
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
        )

    if not api_key:
        raise UnauthorizedException("חסר מפתח API, נדרש header: X-Internal-API-Key")

    if not hmac.compare_digest(api_key, settings.INTERNAL_API_KEY):
        logger.warning("גישה ל-internal endpoint נדחתה, מפתח API שגוי")
        raise AppException(
            message="Invalid internal API key",
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
        )
