"""
Draft Service - מחזור החיים של טיוטות AI

טיוטה חדשה מחליפה את הקודמות בלי לעדכן אותן: המצב האפקטיבי מחושב
בקריאה (לא האחרונה או עבר TTL => expired). מדריך יכול להשתמש בטיוטה
או להתעלם ממנה רק כשהיא proposed בפועל.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DraftNotActionableError, NotFoundException
from app.core.logging import get_logger
from app.db.models.ai_draft import AIDraft, DraftState
from app.db.models.audit_log import AuditAction, AuditActorType
from app.domain.services.audit_service import AuditService, CONVERSATION_ENTITY
from app.domain.services.conversation_service import ConversationService
from app.domain.services.inbound_message_service import InboundMessageService

logger = get_logger(__name__)


class DraftService:
    """Service for proposing drafts and acting on them"""

    def __init__(self, db: AsyncSession, ttl_hours: int = 24):
        self.db = db
        self.ttl = timedelta(hours=ttl_hours)
        self.audit = AuditService(db)

    async def latest_draft(self, conversation_id: int) -> Optional[AIDraft]:
        result = await self.db.execute(
            select(AIDraft)
            .where(AIDraft.conversation_id == conversation_id)
            .order_by(AIDraft.created_at.desc(), AIDraft.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def effective_state(
        self,
        draft: AIDraft,
        latest_id: Optional[int],
        now: Optional[datetime] = None,
    ) -> DraftState:
        if draft.state != DraftState.PROPOSED:
            return draft.state
        now = now or datetime.utcnow()
        if latest_id is not None and draft.id != latest_id:
            return DraftState.EXPIRED
        if draft.created_at is not None and now - draft.created_at > self.ttl:
            return DraftState.EXPIRED
        return DraftState.PROPOSED

    async def propose(
        self,
        conversation_id: int,
        message_id: int,
        text: str,
        model: str,
        language: Optional[str] = None,
        snapshot_id: Optional[int] = None,
        payload: Optional[dict] = None,
    ) -> AIDraft:
        draft = AIDraft(
            conversation_id=conversation_id,
            message_id=message_id,
            snapshot_id=snapshot_id,
            text=text,
            language=language,
            model=model,
            state=DraftState.PROPOSED,
        )
        self.db.add(draft)
        await self.db.flush()
        self.audit.record(
            action=AuditAction.AI_DRAFT_PROPOSED,
            entity_type=CONVERSATION_ENTITY,
            entity_id=conversation_id,
            payload={"draft_id": draft.id, "message_id": message_id, **(payload or {})},
        )
        await self.db.commit()
        return draft

    async def get_actionable_draft(self, conversation_id: int, now: Optional[datetime] = None) -> Optional[AIDraft]:
        draft = await self.latest_draft(conversation_id)
        if draft is None:
            return None
        if self.effective_state(draft, draft.id, now) != DraftState.PROPOSED:
            return None
        return draft

    async def _get_owned_draft(self, draft_id: int, instructor_id: int) -> AIDraft:
        draft = await self.db.get(AIDraft, draft_id)
        if draft is None:
            raise NotFoundException("Draft", draft_id)
        # בדיקת בעלות דרך השיחה
        await ConversationService(self.db).get_owned_conversation(draft.conversation_id, instructor_id)
        return draft

    async def _require_actionable(self, draft: AIDraft) -> None:
        latest = await self.latest_draft(draft.conversation_id)
        state = self.effective_state(draft, latest.id if latest else None)
        if state != DraftState.PROPOSED:
            raise DraftNotActionableError(draft.id, state.value)

    async def use(self, draft_id: int, instructor_id: int, final_text: Optional[str] = None) -> AIDraft:
        """
        המדריך שולח את הטיוטה (אפשר עם עריכה). נרשמת הודעה יוצאת.
        """
        draft = await self._get_owned_draft(draft_id, instructor_id)
        await self._require_actionable(draft)

        conversation = await ConversationService(self.db).get_owned_conversation(
            draft.conversation_id, instructor_id
        )
        text = (final_text or "").strip() or draft.text
        outbound = await InboundMessageService(self.db).record_outbound(
            conversation.id, conversation.channel, text
        )
        draft.state = DraftState.USED
        draft.acted_at = datetime.utcnow()
        self.audit.record(
            action=AuditAction.AI_DRAFT_USED,
            entity_type=CONVERSATION_ENTITY,
            entity_id=draft.conversation_id,
            actor_type=AuditActorType.INSTRUCTOR,
            actor_id=instructor_id,
            payload={"draft_id": draft.id, "outbound_message_id": outbound.id, "edited": text != draft.text},
        )
        await self.db.commit()
        logger.info(
            "Draft used",
            extra_data={"draft_id": draft.id, "conversation_id": draft.conversation_id},
        )
        return draft

    async def ignore(self, draft_id: int, instructor_id: int) -> AIDraft:
        draft = await self._get_owned_draft(draft_id, instructor_id)
        await self._require_actionable(draft)
        draft.state = DraftState.IGNORED
        draft.acted_at = datetime.utcnow()
        self.audit.record(
            action=AuditAction.AI_DRAFT_IGNORED,
            entity_type=CONVERSATION_ENTITY,
            entity_id=draft.conversation_id,
            actor_type=AuditActorType.INSTRUCTOR,
            actor_id=instructor_id,
            payload={"draft_id": draft.id},
        )
        await self.db.commit()
        return draft
