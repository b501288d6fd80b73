"""
בדיקות ל-probes: liveness ו-readiness
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.circuit_breaker import get_ai_circuit_breaker
from app.core.feature_gates import FeatureGates, get_feature_gates
from app.main import app


class TestHealth:
    @pytest.mark.integration
    async def test_liveness(self, test_client):
        response = await test_client.get("/health")
        assert response.json() == {"status": "healthy"}

    @pytest.mark.integration
    async def test_ready(self, test_client):
        response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "db": "ok", "ai": "ok"}

    @pytest.mark.integration
    async def test_open_ai_circuit_is_degraded_not_down(self, test_client):
        breaker = get_ai_circuit_breaker()
        for _ in range(breaker.config.failure_threshold):
            breaker.record_failure()

        response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["ai"] == "circuit_open"

    @pytest.mark.integration
    async def test_kill_switch_reported(self, test_client):
        app.dependency_overrides[get_feature_gates] = lambda: FeatureGates(ai_emergency_disable=True)

        response = await test_client.get("/health/ready")

        assert response.json()["ai"] == "disabled"

    @pytest.mark.integration
    async def test_database_down(self, test_client, db_session):
        failure = OperationalError("SELECT 1", {}, Exception("connection refused"))
        with patch.object(db_session, "execute", side_effect=failure):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"
        assert response.json()["db"] == "error: db_unavailable"
