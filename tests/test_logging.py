"""
Tests for Logging Infrastructure

correlation id, פורמט JSON, מיסוך מזהים ותיעוד שלבי הצנרת
"""
import json
import logging
from io import StringIO

import pytest

from app.core.logging import (
    JSONFormatter,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    log_async_operation,
    log_stage,
    mask_identity,
    set_correlation_id,
)


@pytest.fixture
def captured():
    """logger עם handler בפורמט JSON, מחזיר (logger, פונקציה שמפענחת את השורות)"""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger = get_logger("tests.captured")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    def entries() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield logger, entries
    logger.removeHandler(handler)


class TestCorrelationId:
    @pytest.mark.unit
    def test_generated_ids_are_short_and_unique(self):
        ids = {generate_correlation_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(cid) == 8 for cid in ids)

    @pytest.mark.unit
    def test_set_then_get(self):
        assert set_correlation_id("req-0001") == "req-0001"
        assert get_correlation_id() == "req-0001"

    @pytest.mark.unit
    def test_set_none_generates(self):
        assert len(set_correlation_id(None)) == 8


class TestJSONFormatter:
    @pytest.mark.unit
    def test_entry_fields_and_extra(self, captured):
        logger, entries = captured
        set_correlation_id("corr1234")

        logger.info("Inbound message stored", extra_data={"conversation_id": 7})

        entry = entries()[0]
        assert entry["level"] == "INFO"
        assert entry["message"] == "Inbound message stored"
        assert entry["logger"] == "tests.captured"
        assert entry["correlation_id"] == "corr1234"
        assert entry["extra"] == {"conversation_id": 7}

    @pytest.mark.unit
    def test_hebrew_is_not_escaped(self, captured):
        logger, entries = captured
        logger.warning("כשלון ברישום ראיה")
        assert entries()[0]["message"] == "כשלון ברישום ראיה"

    @pytest.mark.unit
    def test_exception_is_included(self, captured):
        logger, entries = captured
        try:
            raise ValueError("bad payload")
        except ValueError:
            logger.error("Draft orchestration failed", exc_info=True)

        assert "ValueError: bad payload" in entries()[0]["exception"]

    @pytest.mark.unit
    def test_identity_fields_are_masked(self, captured):
        logger, entries = captured
        logger.info("Conversation resolved", extra_data={"external_identity": "+393331234567", "channel": "sms"})

        extra = entries()[0]["extra"]
        assert extra["external_identity"] == "*********4567"
        assert extra["channel"] == "sms"

    @pytest.mark.unit
    def test_caller_is_reported(self, captured):
        logger, entries = captured

        def ingest_step():
            logger.info("stored")

        ingest_step()

        assert entries()[0]["function"] == "ingest_step"


class TestMaskIdentity:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("+393331234567", "*********4567"),
            ("whatsapp:+393331234567", "whatsapp:*********4567"),
            ("guest-42", "guest-42"),
            (None, ""),
            ("", ""),
        ],
    )
    def test_mask(self, value, expected):
        assert mask_identity(value) == expected


class TestLogStage:
    @pytest.mark.unit
    async def test_successful_stage_records_outcome_and_duration(self, captured):
        logger, entries = captured

        async with log_stage(logger, "classification", conversation_id=3) as stage:
            stage["outcome"] = "timeout"

        entry = entries()[-1]
        assert entry["message"] == "Stage classification finished"
        assert entry["extra"]["conversation_id"] == 3
        assert entry["extra"]["outcome"] == "timeout"
        assert entry["extra"]["duration_ms"] >= 0

    @pytest.mark.unit
    async def test_failing_stage_is_logged_and_reraised(self, captured):
        logger, entries = captured

        with pytest.raises(RuntimeError):
            async with log_stage(logger, "draft"):
                raise RuntimeError("provider down")

        entry = entries()[-1]
        assert entry["level"] == "WARNING"
        assert entry["extra"]["outcome"] == "error"
        assert entry["extra"]["error"] == "provider down"


class TestAsyncLoggingDecorator:
    @pytest.mark.unit
    async def test_returns_result(self):
        @log_async_operation("summary_refresh")
        async def refresh():
            return "stored"

        assert await refresh() == "stored"

    @pytest.mark.unit
    async def test_reraises(self):
        @log_async_operation("summary_refresh")
        async def refresh():
            raise ValueError("invalid summary")

        with pytest.raises(ValueError):
            await refresh()
