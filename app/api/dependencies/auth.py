"""
FastAPI dependencies לאימות מדריכים

שימוש:
    @router.get("/bookings/{booking_id}")
    async def get_booking(
        instructor: Instructor = Depends(get_current_instructor),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import verify_token
from app.core.exceptions import (
    NotFoundException,
    OnboardingRequiredException,
    PilotOnlyException,
    UnauthorizedException,
)
from app.core.feature_gates import FeatureGates, get_feature_gates
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.instructor import Instructor

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_instructor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Instructor:
    """
    אימות JWT וטעינת המדריך.

    401 אם הטוקן חסר או לא תקין, 404 אם המדריך לא קיים או לא פעיל,
    403 ONBOARDING_REQUIRED אם תהליך ההצטרפות לא הושלם.
    """
    if credentials is None:
        raise UnauthorizedException()

    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise UnauthorizedException("טוקן לא תקין או פג תוקף")

    instructor = await db.get(Instructor, token_data.instructor_id)
    if instructor is None or not instructor.is_active:
        logger.warning(
            "Instructor access denied, instructor not found",
            extra_data={
                "instructor_id": token_data.instructor_id,
                "found": instructor is not None,
            },
        )
        raise NotFoundException("Instructor", token_data.instructor_id)

    if not instructor.onboarding_completed:
        raise OnboardingRequiredException(instructor.id)

    return instructor


async def require_pilot_instructor(
    instructor: Instructor = Depends(get_current_instructor),
    gates: FeatureGates = Depends(get_feature_gates),
) -> Instructor:
    """פעולות שמוגבלות לפיילוט כשמוגדרת רשימת מדריכים"""
    if not gates.is_pilot(instructor.id):
        logger.info(
            "Pilot-only action rejected",
            extra_data={"instructor_id": instructor.id},
        )
        raise PilotOnlyException(instructor.id)
    return instructor
