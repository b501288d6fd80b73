"""
Inbound Messages - נקודת הכניסה הפנימית להודעות לקוח

הגשר (WhatsApp/Telegram) קורא ל-endpoint אחרי נרמול ההודעה.
קליטה שנכשלה מחזירה 503 כדי שהגשר ינסה שוב. בעיות בצנרת הטיוטה
לא מכשילות את הקריאה: ההודעה כבר נשמרה.
"""
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.internal_auth import require_internal_api_key
from app.api.routes.bookings import naive_utc
from app.core.exceptions import IngestionFailedError, NotFoundException
from app.core.feature_gates import FeatureGates, get_feature_gates
from app.core.logging import get_correlation_id, get_logger, mask_identity
from app.db.database import get_db
from app.db.models.instructor import Instructor
from app.domain.services.ai import BaseAIClient, get_ai_client
from app.domain.services.conversation_service import ConversationService
from app.domain.services.draft_orchestrator import OrchestratorConfig, orchestrate_inbound_draft
from app.domain.services.inbound_message_service import InboundMessageService

logger = get_logger(__name__)

router = APIRouter()

SUPPORTED_CHANNELS = ("whatsapp", "telegram", "sms", "email", "web")


class InboundMessageRequest(BaseModel):
    instructor_id: int
    channel: str
    external_identity: str = Field(..., min_length=1, max_length=128)
    external_message_id: str = Field(..., min_length=1, max_length=128)
    text: str = Field("", max_length=4096)
    sender_identity: str | None = None
    received_at: datetime | None = None
    language: str | None = Field(None, max_length=8)
    raw_payload: dict[str, Any] | None = None

    @field_validator("channel")
    @classmethod
    def validate_channel(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SUPPORTED_CHANNELS:
            raise ValueError(f"unsupported channel: {v}")
        return v

    @field_validator("received_at")
    @classmethod
    def validate_received_at(cls, v: datetime | None) -> datetime | None:
        return naive_utc(v)


class InboundMessageResponse(BaseModel):
    ok: bool = True
    conversation_id: int
    message_id: int
    orchestration: dict[str, Any] | None


@router.post(
    "/messages",
    response_model=InboundMessageResponse,
    summary="קליטת הודעה נכנסת והרצת צנרת הטיוטה",
    responses={503: {"description": "Ingestion failed, safe to retry"}},
)
async def receive_inbound_message(
    body: InboundMessageRequest,
    _: None = Depends(require_internal_api_key),
    db: AsyncSession = Depends(get_db),
    gates: FeatureGates = Depends(get_feature_gates),
    ai_client: BaseAIClient = Depends(get_ai_client),
) -> InboundMessageResponse:
    try:
        instructor = await db.get(Instructor, body.instructor_id)
        if instructor is None:
            raise NotFoundException("Instructor", body.instructor_id)

        conversation = await ConversationService(db).resolve(
            channel=body.channel,
            external_identity=body.external_identity,
            instructor_id=instructor.id,
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            "כשלון באיתור שיחה להודעה נכנסת",
            extra_data={
                "instructor_id": body.instructor_id,
                "external_message_id": body.external_message_id,
                "sender": mask_identity(body.external_identity),
                "error": str(e),
            },
            exc_info=True,
        )
        raise IngestionFailedError(body.external_message_id, str(e)) from e

    message_id = await InboundMessageService(db).persist_inbound_message_with_inbox_bridge(
        conversation_id=conversation.id,
        channel=body.channel,
        external_message_id=body.external_message_id,
        sender_identity=body.sender_identity or body.external_identity,
        text=body.text,
        received_at=body.received_at,
        raw_payload=body.raw_payload,
    )
    logger.info(
        "Inbound message stored",
        extra_data={
            "conversation_id": conversation.id,
            "message_id": message_id,
            "sender": mask_identity(body.external_identity),
        },
    )

    orchestration: dict[str, Any] | None = None
    try:
        result = await orchestrate_inbound_draft(
            db,
            conversation_id=conversation.id,
            external_message_id=body.external_message_id,
            message_text=body.text,
            channel=body.channel,
            language=body.language,
            request_id=get_correlation_id(),
            client=ai_client,
            config=OrchestratorConfig.from_settings(gates=gates),
        )
        orchestration = result.to_dict()
    except Exception as e:
        # rollback למניעת שינויים חלקיים שנשארים בסשן
        await db.rollback()
        logger.error(
            "Draft orchestration failed",
            extra_data={"conversation_id": conversation.id, "message_id": message_id, "error": str(e)},
            exc_info=True,
        )

    return InboundMessageResponse(
        conversation_id=conversation.id,
        message_id=message_id,
        orchestration=orchestration,
    )
