"""
Conversation API Routes - מצב AI בשיחה וטיוטות
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_instructor
from app.core.config import settings
from app.db.database import get_db
from app.db.models.ai_draft import AIDraft, DraftState
from app.db.models.conversation import ConversationAIState, ConversationStatus
from app.db.models.instructor import Instructor
from app.domain.services.conversation_service import ConversationService
from app.domain.services.draft_service import DraftService

router = APIRouter()


class AIStateUpdate(BaseModel):
    ai_state: ConversationAIState


class ConversationResponse(BaseModel):
    id: int
    channel: str
    customer_id: int | None
    status: ConversationStatus
    ai_state: ConversationAIState
    last_message_at: datetime | None

    model_config = {"from_attributes": True}

    @field_serializer("status", "ai_state")
    def serialize_enum(self, v) -> str:
        return v.value


class ConversationEnvelope(BaseModel):
    ok: bool = True
    conversation: ConversationResponse


class DraftResponse(BaseModel):
    id: int
    conversation_id: int
    message_id: int
    text: str
    language: str | None
    state: DraftState
    created_at: datetime | None

    model_config = {"from_attributes": True}

    @field_serializer("state")
    def serialize_state(self, v: DraftState) -> str:
        return v.value


class DraftEnvelope(BaseModel):
    ok: bool = True
    draft: DraftResponse | None


class UseDraftRequest(BaseModel):
    final_text: str | None = None


def _draft_service(db: AsyncSession) -> DraftService:
    return DraftService(db, settings.DRAFT_TTL_HOURS)


@router.patch("/{conversation_id}/ai-state", response_model=ConversationEnvelope, summary="השהיית/חידוש AI")
async def update_ai_state(
    conversation_id: int,
    body: AIStateUpdate,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> ConversationEnvelope:
    conversation = await ConversationService(db).set_ai_state(conversation_id, instructor.id, body.ai_state)
    return ConversationEnvelope(conversation=ConversationResponse.model_validate(conversation))


@router.get("/{conversation_id}/draft", response_model=DraftEnvelope, summary="הטיוטה הפעילה בשיחה")
async def get_active_draft(
    conversation_id: int,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> DraftEnvelope:
    await ConversationService(db).get_owned_conversation(conversation_id, instructor.id)
    draft: AIDraft | None = await _draft_service(db).get_actionable_draft(conversation_id)
    return DraftEnvelope(draft=DraftResponse.model_validate(draft) if draft else None)


@router.post("/drafts/{draft_id}/use", response_model=DraftEnvelope, summary="שליחת טיוטה")
async def use_draft(
    draft_id: int,
    body: UseDraftRequest | None = None,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> DraftEnvelope:
    draft = await _draft_service(db).use(draft_id, instructor.id, body.final_text if body else None)
    return DraftEnvelope(draft=DraftResponse.model_validate(draft))


@router.post("/drafts/{draft_id}/ignore", response_model=DraftEnvelope, summary="התעלמות מטיוטה")
async def ignore_draft(
    draft_id: int,
    instructor: Instructor = Depends(get_current_instructor),
    db: AsyncSession = Depends(get_db),
) -> DraftEnvelope:
    draft = await _draft_service(db).ignore(draft_id, instructor.id)
    return DraftEnvelope(draft=DraftResponse.model_validate(draft))
