"""
אימות JWT לנתיבי המדריך

הטוקנים מונפקים על ידי שירות ההתחברות. כאן רק מאמתים חתימה ותוקף
ומחלצים את instructor_id. create_access_token משמש כלי פיתוח ובדיקות.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    """תוכן ה-JWT token"""
    instructor_id: int
    exp: int  # Unix timestamp


def create_access_token(instructor_id: int, expires_minutes: int = 60) -> str:
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY לא מוגדר, אי אפשר ליצור טוקן")
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"instructor_id": instructor_id, "exp": int(expire.timestamp())}
    return pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenPayload]:
    """אימות JWT token, מחזיר None אם לא תקין או פג תוקף"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY ריק, טוקנים לא יאומתו")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (KeyError, ValueError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
