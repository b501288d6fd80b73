"""
Audit Service - לוג ראיות append-only וקריאות "מאז" (since)

קריאות הראיות הן eventually consistent: רשומה שנכתבה בבקשה אחרת עשויה
להופיע רק בקריאה הבאה. צרכנים (בדיקות, ניטור) מבצעים polling עד deadline.
"""
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger, get_correlation_id
from app.db.models.audit_log import AuditLog, AuditAction, AuditActorType, AuditSeverity
from app.db.models.booking import Booking

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500

CONVERSATION_ENTITY = "conversation"
BOOKING_ENTITY = "booking"


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_PAGE_SIZE))


class AuditService:
    """Service for writing and reading the evidence log"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def build_entry(
        self,
        action: AuditAction | str,
        entity_type: str,
        entity_id: Any,
        actor_type: AuditActorType = AuditActorType.SYSTEM,
        actor_id: Any = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        request_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        return AuditLog(
            actor_type=actor_type,
            actor_id=str(actor_id) if actor_id is not None else None,
            action=action.value if isinstance(action, AuditAction) else action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            severity=severity,
            request_id=request_id or get_correlation_id(),
            payload=payload or {},
        )

    def record(self, **kwargs: Any) -> AuditLog:
        """
        הוספת רשומה לטרנזקציה הנוכחית בלי commit.

        משמש כשהרשומה חייבת להיכתב יחד עם השינוי העסקי (או לא בכלל).
        """
        entry = self.build_entry(**kwargs)
        self.db.add(entry)
        return entry

    async def record_safe(self, **kwargs: Any) -> Optional[AuditLog]:
        """
        רישום ראיה בלי לשבור את הזרימה (fail-open).

        הכתיבה נעשית ב-savepoint ו-commit מיידי. כשלון נרשם ללוג ומחזיר None.
        """
        entry = self.build_entry(**kwargs)
        try:
            async with self.db.begin_nested():
                self.db.add(entry)
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.warning(
                "כשלון ברישום ראיה ללוג הביקורת",
                extra_data={
                    "action": entry.action,
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                    "error": str(e),
                },
            )
            await self.db.rollback()
            return None
        return entry

    async def list_audit_since(
        self,
        since: datetime,
        limit: int = DEFAULT_PAGE_SIZE,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
    ) -> List[AuditLog]:
        """All evidence rows created at or after ``since``, oldest first"""
        query = select(AuditLog).where(AuditLog.created_at >= since)
        if action:
            query = query.where(AuditLog.action == action)
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        result = await self.db.execute(
            query.order_by(AuditLog.created_at.asc(), AuditLog.id.asc()).limit(_clamp_limit(limit))
        )
        return list(result.scalars().all())

    async def list_conversation_audit_since(
        self,
        conversation_id: int,
        since: datetime,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[AuditLog]:
        result = await self.db.execute(
            select(AuditLog)
            .where(
                AuditLog.entity_type == CONVERSATION_ENTITY,
                AuditLog.entity_id == str(conversation_id),
                AuditLog.created_at >= since,
            )
            .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
            .limit(_clamp_limit(limit))
        )
        return list(result.scalars().all())

    async def list_bookings_since(
        self,
        instructor_id: int,
        since: datetime,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[Booking]:
        """הזמנות של מדריך שנוצרו או עודכנו מאז ``since``"""
        result = await self.db.execute(
            select(Booking)
            .where(
                Booking.instructor_id == instructor_id,
                Booking.updated_at >= since,
            )
            .order_by(Booking.updated_at.asc(), Booking.id.asc())
            .limit(_clamp_limit(limit))
        )
        return list(result.scalars().all())
