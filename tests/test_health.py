"""Tests for the health check endpoint."""
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from barback.api.health import check_database, get_uptime_seconds, set_app_start_time


class TestHealthCheckEndpoint:
    """Test suite for /health endpoint."""

    @pytest.mark.asyncio
    async def test_health_endpoint_returns_200_when_db_ok(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["uptime_seconds"] >= 0
        assert data["checks"]["database"]["status"] == "ok"
        assert isinstance(data["checks"]["database"]["response_time_ms"], int)

    @pytest.mark.asyncio
    async def test_health_reports_coordinators(self, client: AsyncClient) -> None:
        """Coordinator block lists cached segments, live sessions and maintenance tasks."""
        await client.post("/streams", json={})

        coordinators = (await client.get("/health")).json()["coordinators"]

        assert "spirits" in coordinators["catalog_segments"]
        assert coordinators["active_sessions"] == 1
        assert coordinators["unread_notifications"] == 0
        assert set(coordinators["tasks"]) == {"catalog_refresh", "grant_sweep", "session_sweep"}
        assert coordinators["tasks"]["grant_sweep"]["running"] is True

    @pytest.mark.asyncio
    async def test_health_endpoint_content_type(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert "application/json" in response.headers["content-type"]

    def test_health_endpoint_uptime_tracking(self) -> None:
        """Test that uptime increases over time."""
        # Set start time to 1 hour ago
        one_hour_ago = datetime.now() - timedelta(hours=1)
        set_app_start_time(one_hour_ago)

        uptime = get_uptime_seconds()

        assert 3590 <= uptime <= 3610, f"Expected ~3600 seconds, got {uptime}"


class TestHealthCheckDegradedStates:
    """Test health check behavior when dependencies fail."""

    @pytest.mark.asyncio
    async def test_check_database_reports_down(self) -> None:
        class FailingSession:
            async def execute(self, statement):
                raise OperationalError("SELECT 1", {}, ConnectionRefusedError())

        result = await check_database(FailingSession())

        assert result["status"] == "down"
        assert result["error"] == "OperationalError"
        assert result["response_time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_check_database_ok(self, db_session) -> None:
        result = await check_database(db_session)

        assert result["status"] == "ok"
