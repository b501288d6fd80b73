"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- HTTP test client with dependency overrides
- Test data factories (instructors, customers, conversations, bookings)
"""
# הגדרת משתני סביבה לפני ייבוא app, הולידטור דורש מפתח כש-DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-api-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AI_PROVIDER", "heuristic")

from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.feature_gates import FeatureGates, get_feature_gates
from app.db.database import Base, build_engine, get_db
from app.db.models.booking import Booking, BookingStatus
from app.db.models.conversation import Conversation, ConversationAIState
from app.db.models.customer_profile import CustomerProfile
from app.db.models.instructor import Instructor
from app.domain.services.ai import get_ai_client
from app.domain.services.ai.heuristic_client import HeuristicAIClient
from app.domain.services.ai.provider_factory import reset_ai_client
from app.main import app
from tests.helpers import tomorrow_at

# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# הערה: לא מגדירים event_loop fixture מותאם אישית כי pytest-asyncio 0.23+
# מטפל בזה אוטומטית עם asyncio_mode=auto ו-asyncio_default_fixture_loop_scope=function


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = build_engine(TEST_DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def reset_singletons():
    """circuit breakers ולקוח AI הם singletons ברמת התהליך"""
    CircuitBreaker.reset_all()
    reset_ai_client()
    yield
    CircuitBreaker.reset_all()
    reset_ai_client()


@pytest.fixture
def feature_gates() -> FeatureGates:
    """ללא רשימת פיילוט וללא מתג חירום, בדיקות יכולות לדרוס"""
    return FeatureGates()


@pytest.fixture
def ai_client() -> HeuristicAIClient:
    return HeuristicAIClient(default_language="it")


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, feature_gates: FeatureGates, ai_client):
    """Create test client with database, gates and AI client overrides"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_feature_gates] = lambda: feature_gates
    app.dependency_overrides[get_ai_client] = lambda: ai_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-API-Key": settings.INTERNAL_API_KEY}


# ============================================================================
# Test Data Factories
# ============================================================================


@pytest.fixture
def instructor_factory(db_session: AsyncSession):
    """Factory for creating test instructors"""
    async def _create_instructor(
        name: str = "Marco Rossi",
        onboarding_completed: bool = True,
        is_active: bool = True,
    ) -> Instructor:
        instructor = Instructor(
            name=name,
            onboarding_completed=onboarding_completed,
            is_active=is_active,
        )
        db_session.add(instructor)
        await db_session.commit()
        await db_session.refresh(instructor)
        return instructor

    return _create_instructor


@pytest.fixture
def customer_factory(db_session: AsyncSession):
    """Factory for creating customer profiles"""
    async def _create_customer(
        instructor_id: int,
        display_name: str = "Giulia",
        phone_number: str | None = "+393331234567",
    ) -> CustomerProfile:
        customer = CustomerProfile(
            instructor_id=instructor_id,
            display_name=display_name,
            phone_number=phone_number,
        )
        db_session.add(customer)
        await db_session.commit()
        await db_session.refresh(customer)
        return customer

    return _create_customer


@pytest.fixture
def conversation_factory(db_session: AsyncSession):
    """Factory for creating conversations"""
    async def _create_conversation(
        instructor_id: int,
        external_identity: str = "+393331234567",
        channel: str = "whatsapp",
        customer_id: int | None = None,
        ai_state: ConversationAIState = ConversationAIState.AI_ON,
    ) -> Conversation:
        conversation = Conversation(
            instructor_id=instructor_id,
            channel=channel,
            external_identity=external_identity,
            customer_id=customer_id,
            ai_state=ai_state,
        )
        db_session.add(conversation)
        await db_session.commit()
        await db_session.refresh(conversation)
        return conversation

    return _create_conversation


@pytest.fixture
def booking_factory(db_session: AsyncSession):
    """Factory for creating bookings directly in a given status"""
    async def _create_booking(
        instructor_id: int,
        status: BookingStatus = BookingStatus.DRAFT,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        customer_id: int | None = None,
        customer_name: str | None = "Giulia",
        notes: str | None = None,
        meeting_point: str | None = "Piazza Centrale",
    ) -> Booking:
        start_time = start_time or tomorrow_at(9)
        booking = Booking(
            instructor_id=instructor_id,
            customer_id=customer_id,
            status=status,
            start_time=start_time,
            end_time=end_time or start_time + timedelta(hours=2),
            customer_name=customer_name,
            notes=notes,
            meeting_point=meeting_point,
        )
        db_session.add(booking)
        await db_session.commit()
        await db_session.refresh(booking)
        return booking

    return _create_booking
