"""
Inbound Message Service - שמירה עמידה וחד-פעמית של הודעות נכנסות

ה-dedup נשען על האילוץ הייחודי (conversation_id, external_message_id)
ולא על בדיקה מקדימה בלבד, כך שגם מסירות מקבילות מתכנסות לשורה אחת.
כשלון אחסון אמיתי לא נבלע: הוא נרשם ב-ERROR ונזרק כ-IngestionFailedError.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import IngestionFailedError
from app.core.logging import get_logger, mask_identity
from app.db.models.audit_log import AuditAction
from app.db.models.message import Message, MessageDirection
from app.domain.services.audit_service import AuditService, CONVERSATION_ENTITY
from app.domain.services.conversation_service import ConversationService

logger = get_logger(__name__)


@dataclass(frozen=True)
class IngestedMessage:
    message_id: int
    duplicate: bool


class InboundMessageService:
    """Service for persisting inbound and outbound messages"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find(self, conversation_id: int, external_message_id: str) -> Optional[Message]:
        result = await self.db.execute(
            select(Message).where(
                Message.conversation_id == conversation_id,
                Message.external_message_id == external_message_id,
            )
        )
        return result.scalar_one_or_none()

    async def ingest(
        self,
        conversation_id: int,
        channel: str,
        external_message_id: Optional[str],
        sender_identity: Optional[str],
        text: str,
        received_at: Optional[datetime] = None,
        raw_payload: Optional[dict[str, Any]] = None,
    ) -> IngestedMessage:
        """
        Persist one inbound message, at most once per external id.

        Raises:
            IngestionFailedError: the store rejected the write
        """
        try:
            if external_message_id:
                existing = await self._find(conversation_id, external_message_id)
                if existing:
                    logger.info(
                        "Duplicate inbound message skipped",
                        extra_data={"conversation_id": conversation_id, "message_id": existing.id},
                    )
                    return IngestedMessage(existing.id, True)

            received_at = received_at or datetime.utcnow()
            message = Message(
                conversation_id=conversation_id,
                channel=channel,
                direction=MessageDirection.INBOUND,
                external_message_id=external_message_id,
                sender_identity=sender_identity,
                text=text or "",
                raw_payload=raw_payload,
                received_at=received_at,
            )

            try:
                async with self.db.begin_nested():
                    self.db.add(message)
            except IntegrityError:
                # מסירה מקבילה של אותה הודעה הקדימה אותנו
                existing = await self._find(conversation_id, external_message_id) if external_message_id else None
                if existing is None:
                    raise
                return IngestedMessage(existing.id, True)

            await ConversationService(self.db).touch(conversation_id, received_at)
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "כשלון בשמירת הודעה נכנסת",
                extra_data={
                    "conversation_id": conversation_id,
                    "external_message_id": external_message_id,
                    "sender": mask_identity(sender_identity),
                    "error": str(e),
                },
                exc_info=True,
            )
            await self.db.rollback()
            raise IngestionFailedError(external_message_id, str(e)) from e

        logger.info(
            "Inbound message stored",
            extra_data={
                "conversation_id": conversation_id,
                "message_id": message.id,
                "channel": channel,
            },
        )
        return IngestedMessage(message.id, False)

    async def persist_inbound_message_with_inbox_bridge(
        self,
        conversation_id: int,
        channel: str,
        external_message_id: Optional[str],
        sender_identity: Optional[str],
        text: str,
        received_at: Optional[datetime] = None,
        raw_payload: Optional[dict[str, Any]] = None,
    ) -> int:
        """
        Webhook entry point: ingest and leave evidence of first receipt.

        Returns the message id, the same one on every re-delivery.
        """
        ingested = await self.ingest(
            conversation_id=conversation_id,
            channel=channel,
            external_message_id=external_message_id,
            sender_identity=sender_identity,
            text=text,
            received_at=received_at,
            raw_payload=raw_payload,
        )
        if not ingested.duplicate:
            await AuditService(self.db).record_safe(
                action=AuditAction.INBOUND_MESSAGE_RECEIVED,
                entity_type=CONVERSATION_ENTITY,
                entity_id=conversation_id,
                payload={
                    "message_id": ingested.message_id,
                    "channel": channel,
                    "external_message_id": external_message_id,
                },
            )
        return ingested.message_id

    async def record_outbound(self, conversation_id: int, channel: str, text: str) -> Message:
        """הודעה יוצאת (למשל טיוטה שהמדריך שלח), ללא מזהה חיצוני"""
        message = Message(
            conversation_id=conversation_id,
            channel=channel,
            direction=MessageDirection.OUTBOUND,
            text=text,
            received_at=datetime.utcnow(),
        )
        self.db.add(message)
        await self.db.flush()
        return message

    async def get_message(self, message_id: int) -> Optional[Message]:
        return await self.db.get(Message, message_id)

    async def find_inbound(self, conversation_id: int, external_message_id: str) -> Optional[Message]:
        message = await self._find(conversation_id, external_message_id)
        if message and message.direction == MessageDirection.INBOUND:
            return message
        return None

    async def recent_messages(self, conversation_id: int, limit: int = 20) -> list[Message]:
        """ההודעות האחרונות בשיחה, מהישנה לחדשה"""
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def count_messages(self, conversation_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Message.id)).where(Message.conversation_id == conversation_id)
        )
        return int(result.scalar_one())
