"""
Conversation Service - איתור/יצירה של שיחה לפי מזהה חיצוני
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ForbiddenException, NotFoundException
from app.core.logging import get_logger, mask_identity
from app.db.models.audit_log import AuditAction, AuditActorType
from app.db.models.conversation import Conversation, ConversationAIState, ConversationStatus
from app.db.models.customer_profile import CustomerProfile
from app.domain.services.audit_service import AuditService, CONVERSATION_ENTITY

logger = get_logger(__name__)


class ConversationService:
    """Service for resolving and updating conversations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find(self, instructor_id: int, channel: str, external_identity: str) -> Optional[Conversation]:
        result = await self.db.execute(
            select(Conversation).where(
                Conversation.instructor_id == instructor_id,
                Conversation.channel == channel,
                Conversation.external_identity == external_identity,
            )
        )
        return result.scalar_one_or_none()

    async def resolve(self, channel: str, external_identity: str, instructor_id: int) -> Conversation:
        """
        Idempotent get-or-create on (instructor_id, channel, external_identity).

        גישה אופטימיסטית: INSERT ב-savepoint, ובהתנגשות על האילוץ הייחודי
        קוראים את השורה שיצר הקורא המקביל. לא נוצרות רשומות נלוות.
        """
        existing = await self._find(instructor_id, channel, external_identity)
        if existing:
            return existing

        conversation = Conversation(
            instructor_id=instructor_id,
            channel=channel,
            external_identity=external_identity,
            status=ConversationStatus.OPEN,
            ai_state=ConversationAIState.AI_ON,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(conversation)
            await self.db.commit()
        except IntegrityError:
            # קורא מקביל הקדים אותנו
            existing = await self._find(instructor_id, channel, external_identity)
            if existing is None:
                raise
            logger.info(
                "Conversation created concurrently, reusing existing row",
                extra_data={"conversation_id": existing.id, "channel": channel},
            )
            return existing

        logger.info(
            "Conversation created",
            extra_data={
                "conversation_id": conversation.id,
                "instructor_id": instructor_id,
                "channel": channel,
                "external_identity": mask_identity(external_identity),
            },
        )
        return conversation

    async def get_owned_conversation(self, conversation_id: int, instructor_id: int) -> Conversation:
        conversation = await self.db.get(Conversation, conversation_id)
        if not conversation:
            raise NotFoundException("Conversation", conversation_id)
        if conversation.instructor_id != instructor_id:
            raise ForbiddenException("Conversation", conversation_id)
        return conversation

    async def link_customer(self, conversation_id: int, customer_id: int) -> Conversation:
        """קישור לקוח לשיחה, שלב נפרד ואופציונלי אחרי resolve"""
        conversation = await self.db.get(Conversation, conversation_id)
        if not conversation:
            raise NotFoundException("Conversation", conversation_id)
        customer = await self.db.get(CustomerProfile, customer_id)
        if not customer:
            raise NotFoundException("Customer", customer_id)
        if customer.instructor_id != conversation.instructor_id:
            raise ForbiddenException("Customer", customer_id)

        conversation.customer_id = customer_id
        await self.db.commit()
        return conversation

    async def set_ai_state(
        self,
        conversation_id: int,
        instructor_id: int,
        ai_state: ConversationAIState,
    ) -> Conversation:
        """השהיית/חידוש ה-AI על ידי המדריך"""
        conversation = await self.get_owned_conversation(conversation_id, instructor_id)
        previous = conversation.ai_state
        conversation.ai_state = ai_state
        AuditService(self.db).record(
            action=AuditAction.CONVERSATION_AI_STATE_CHANGED,
            entity_type=CONVERSATION_ENTITY,
            entity_id=conversation_id,
            actor_type=AuditActorType.INSTRUCTOR,
            actor_id=instructor_id,
            payload={"from": previous.value, "to": ai_state.value},
        )
        await self.db.commit()
        logger.info(
            "Conversation AI state changed",
            extra_data={"conversation_id": conversation_id, "from": previous.value, "to": ai_state.value},
        )
        return conversation

    async def mark_requires_human(self, conversation: Conversation) -> None:
        if conversation.status == ConversationStatus.REQUIRES_HUMAN:
            return
        conversation.status = ConversationStatus.REQUIRES_HUMAN
        await self.db.commit()

    async def touch(self, conversation_id: int, at: datetime) -> None:
        conversation = await self.db.get(Conversation, conversation_id)
        if conversation and (conversation.last_message_at is None or conversation.last_message_at < at):
            conversation.last_message_at = at
