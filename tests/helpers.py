"""
עזרי בדיקות משותפים: טוקנים, זמנים ו-polling לקריאות ראיות
"""
import asyncio
import time
from datetime import datetime, timedelta
from typing import Awaitable, Callable, TypeVar

from app.core.auth import create_access_token

T = TypeVar("T")

RESCHEDULE_TEXT = "move tomorrow's 09:00-11:00 lesson to 11:00-13:00, same meeting point"


def auth_headers(instructor_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(instructor_id)}"}


def tomorrow_at(hour: int, minute: int = 0) -> datetime:
    """מחר לפי UTC, באותו שעון שבו משתמשת ההעשרה"""
    day = datetime.utcnow().date() + timedelta(days=1)
    return datetime.combine(day, datetime.min.time()).replace(hour=hour, minute=minute)


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    predicate: Callable[[T], bool],
    timeout: float = 2.0,
    interval: float = 0.05,
) -> T:
    """קורא ל-fetch עד שה-predicate מתקיים או שה-deadline עובר"""
    deadline = time.monotonic() + timeout
    value = await fetch()
    while not predicate(value):
        if time.monotonic() >= deadline:
            raise AssertionError(f"condition not met within {timeout}s, last value: {value!r}")
        await asyncio.sleep(interval)
        value = await fetch()
    return value
