"""
בדיקות לאיתור שיחה ולשמירת הודעות נכנסות

- resolve אידמפוטנטי ולא יוצר לקוח
- אותו external_message_id נשמר פעם אחת בלבד, גם במסירות חוזרות
- ראיה אחת בלבד על קבלת ההודעה
- כשלון אחסון נזרק כ-IngestionFailedError
"""
from dataclasses import replace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import ForbiddenException, IngestionFailedError
from app.db.models.ai_snapshot import AISnapshot
from app.db.models.audit_log import AuditLog
from app.db.models.conversation import Conversation, ConversationAIState
from app.db.models.customer_profile import CustomerProfile
from app.db.models.message import Message, MessageDirection
from app.domain.services.ai import Intent
from app.domain.services.classification_service import ClassificationService, ClassificationSnapshot
from app.domain.services.conversation_service import ConversationService
from app.domain.services.inbound_message_service import InboundMessageService


async def _count(db_session, model, *conditions) -> int:
    result = await db_session.execute(select(func.count(model.id)).where(*conditions))
    return int(result.scalar_one())


class TestResolveConversation:
    @pytest.mark.integration
    async def test_resolve_creates_once(self, db_session, instructor_factory):
        instructor = await instructor_factory()
        service = ConversationService(db_session)

        first = await service.resolve("whatsapp", "+393331112222", instructor.id)
        second = await service.resolve("whatsapp", "+393331112222", instructor.id)

        assert first.id == second.id
        assert first.ai_state == ConversationAIState.AI_ON
        assert await _count(db_session, Conversation, Conversation.instructor_id == instructor.id) == 1

    @pytest.mark.integration
    async def test_resolve_does_not_create_customer(self, db_session, instructor_factory):
        instructor = await instructor_factory()

        conversation = await ConversationService(db_session).resolve("sms", "+393339998888", instructor.id)

        assert conversation.customer_id is None
        assert await _count(db_session, CustomerProfile) == 0

    @pytest.mark.integration
    async def test_channel_and_instructor_are_part_of_identity(self, db_session, instructor_factory):
        marco = await instructor_factory(name="Marco")
        luca = await instructor_factory(name="Luca")
        service = ConversationService(db_session)

        a = await service.resolve("whatsapp", "+393331112222", marco.id)
        b = await service.resolve("sms", "+393331112222", marco.id)
        c = await service.resolve("whatsapp", "+393331112222", luca.id)

        assert len({a.id, b.id, c.id}) == 3

    @pytest.mark.integration
    async def test_link_customer_of_other_instructor_is_forbidden(
        self, db_session, instructor_factory, customer_factory
    ):
        marco = await instructor_factory(name="Marco")
        luca = await instructor_factory(name="Luca")
        customer = await customer_factory(luca.id)
        conversation = await ConversationService(db_session).resolve("whatsapp", "+39333", marco.id)

        with pytest.raises(ForbiddenException):
            await ConversationService(db_session).link_customer(conversation.id, customer.id)


class TestIngest:
    @pytest.mark.integration
    async def test_same_external_id_is_stored_once(self, db_session, instructor_factory, conversation_factory):
        instructor = await instructor_factory()
        conversation = await conversation_factory(instructor.id)
        service = InboundMessageService(db_session)

        ids = [
            await service.persist_inbound_message_with_inbox_bridge(
                conversation_id=conversation.id,
                channel="whatsapp",
                external_message_id="wamid.ABC",
                sender_identity="+393331234567",
                text="ciao, posso spostare la lezione?",
            )
            for _ in range(5)
        ]

        assert len(set(ids)) == 1
        assert await _count(
            db_session, Message, Message.conversation_id == conversation.id
        ) == 1
        assert await _count(
            db_session,
            AuditLog,
            AuditLog.action == "inbound_message_received",
            AuditLog.entity_id == str(conversation.id),
        ) == 1

    @pytest.mark.integration
    async def test_message_fields_and_last_message_at(self, db_session, instructor_factory, conversation_factory):
        instructor = await instructor_factory()
        conversation = await conversation_factory(instructor.id)

        message_id = await InboundMessageService(db_session).persist_inbound_message_with_inbox_bridge(
            conversation_id=conversation.id,
            channel="whatsapp",
            external_message_id="wamid.XYZ",
            sender_identity="+393331234567",
            text="hello",
        )

        message = await db_session.get(Message, message_id)
        assert message.direction == MessageDirection.INBOUND
        assert message.text == "hello"
        await db_session.refresh(conversation)
        assert conversation.last_message_at == message.received_at

    @pytest.mark.integration
    async def test_messages_without_external_id_are_not_deduplicated(
        self, db_session, instructor_factory, conversation_factory
    ):
        instructor = await instructor_factory()
        conversation = await conversation_factory(instructor.id)
        service = InboundMessageService(db_session)

        first = await service.ingest(conversation.id, "web", None, None, "one")
        second = await service.ingest(conversation.id, "web", None, None, "one")

        assert first.message_id != second.message_id
        assert not first.duplicate and not second.duplicate

    @pytest.mark.integration
    async def test_store_failure_raises_ingestion_failed(self, db_session, instructor_factory, conversation_factory):
        instructor = await instructor_factory()
        conversation = await conversation_factory(instructor.id)
        service = InboundMessageService(db_session)

        failure = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(db_session, "commit", AsyncMock(side_effect=failure)):
            with pytest.raises(IngestionFailedError) as exc_info:
                await service.ingest(conversation.id, "whatsapp", "wamid.FAIL", None, "hi")

        assert exc_info.value.status_code == 503
        assert exc_info.value.details["external_message_id"] == "wamid.FAIL"

    @pytest.mark.integration
    async def test_recent_messages_oldest_first(self, db_session, instructor_factory, conversation_factory):
        instructor = await instructor_factory()
        conversation = await conversation_factory(instructor.id)
        service = InboundMessageService(db_session)
        for i in range(3):
            await service.ingest(conversation.id, "whatsapp", f"m{i}", None, f"text {i}")

        recent = await service.recent_messages(conversation.id, limit=2)

        assert [m.text for m in recent] == ["text 1", "text 2"]
        assert await service.count_messages(conversation.id) == 3

    @pytest.mark.integration
    async def test_store_down_before_dedup_raises_ingestion_failed(
        self, db_session, instructor_factory, conversation_factory
    ):
        instructor = await instructor_factory()
        conversation = await conversation_factory(instructor.id)
        failure = OperationalError("SELECT", {}, Exception("connection refused"))

        with patch.object(db_session, "execute", side_effect=failure):
            with pytest.raises(IngestionFailedError) as exc_info:
                await InboundMessageService(db_session).ingest(
                    conversation.id, "whatsapp", "wamid.DOWN", "+393331234567", "ciao"
                )

        assert exc_info.value.status_code == 503
        assert exc_info.value.details["external_message_id"] == "wamid.DOWN"


class TestConcurrentWriters:
    """
    מדמים קורא מקביל: הבדיקה המקדימה לא רואה את השורה, וה-INSERT
    נתקל באילוץ הייחודי. התוצאה חייבת להיות השורה הקיימת.
    """

    @pytest.mark.integration
    async def test_resolve_reuses_row_created_concurrently(self, db_session, instructor_factory):
        instructor = await instructor_factory()
        service = ConversationService(db_session)
        existing = await service.resolve("whatsapp", "+393331112222", instructor.id)

        with patch.object(service, "_find", AsyncMock(side_effect=[None, existing])):
            resolved = await service.resolve("whatsapp", "+393331112222", instructor.id)

        assert resolved.id == existing.id
        assert await _count(db_session, Conversation, Conversation.instructor_id == instructor.id) == 1

    @pytest.mark.integration
    async def test_ingest_reuses_message_stored_concurrently(
        self, db_session, instructor_factory, conversation_factory
    ):
        instructor = await instructor_factory()
        conversation = await conversation_factory(instructor.id)
        service = InboundMessageService(db_session)
        first = await service.ingest(conversation.id, "whatsapp", "wamid.RACE", None, "ciao")

        stored = await db_session.get(Message, first.message_id)
        with patch.object(service, "_find", AsyncMock(side_effect=[None, stored])):
            second = await service.ingest(conversation.id, "whatsapp", "wamid.RACE", None, "ciao")

        assert second.duplicate
        assert second.message_id == first.message_id
        assert await _count(db_session, Message, Message.conversation_id == conversation.id) == 1

    @pytest.mark.integration
    async def test_snapshot_conflict_returns_first_row(
        self, db_session, instructor_factory, conversation_factory, ai_client
    ):
        instructor = await instructor_factory()
        conversation = await conversation_factory(instructor.id)
        ingested = await InboundMessageService(db_session).ingest(
            conversation.id, "whatsapp", "wamid.SNAP", None, "posso spostare la lezione?"
        )
        service = ClassificationService(db_session, ai_client, timeout_seconds=1.0)
        snapshot = ClassificationSnapshot(
            relevant=True,
            relevance_confidence=0.9,
            relevance_reason=None,
            intent=Intent.RESCHEDULE,
            intent_confidence=0.9,
            model="test",
        )
        first = await service.persist_snapshot(ingested.message_id, conversation.id, snapshot)

        # snapshot שני לאותה הודעה נתקל באילוץ ומחזיר את הקיים
        second = await service.persist_snapshot(
            ingested.message_id, conversation.id, replace(snapshot, intent_confidence=0.5)
        )

        assert second.id == first.id
        assert second.intent_confidence == 0.9
        assert await _count(db_session, AISnapshot, AISnapshot.message_id == ingested.message_id) == 1
