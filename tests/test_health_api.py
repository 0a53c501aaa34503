"""Tests for health check API endpoint."""
from unittest.mock import MagicMock, patch

import pytest


@pytest.mark.api
@pytest.mark.unit
class TestHealthEndpoint:
    """Tests for GET /api/v1/health endpoint."""

    def test_health_check_success(self, client):
        """Test health check returns correct response."""
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "1.0.0"}

    def test_request_id_header(self, client):
        """Every response carries the request id assigned by the audit middleware."""
        response = client.get("/api/v1/health")

        assert response.headers.get("x-request-id")


@pytest.mark.api
@pytest.mark.integration
class TestDetailedHealthEndpoint:
    """Tests for GET /api/v1/health/detailed endpoint."""

    def test_all_components_healthy(self, client, db_session):
        inspector = MagicMock()
        inspector.active.return_value = {"worker-1": []}

        with patch("app.api.routes.health.celery_app") as mock_celery:
            mock_celery.control.inspect.return_value = inspector
            response = client.get("/api/v1/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert "timestamp" in data
        assert data["components"]["database"]["status"] == "healthy"
        assert data["components"]["celery"]["active_workers"] == 1
        assert data["components"]["celery"]["worker_names"] == ["worker-1"]

    def test_no_workers_is_degraded(self, client, db_session):
        inspector = MagicMock()
        inspector.active.return_value = None

        with patch("app.api.routes.health.celery_app") as mock_celery:
            mock_celery.control.inspect.return_value = inspector
            response = client.get("/api/v1/health/detailed")

        data = response.json()
        assert data["status"] == "degraded"
        assert data["components"]["celery"]["error"] == "No active workers found"

    def test_broker_unreachable_is_degraded(self, client, db_session):
        with patch("app.api.routes.health.celery_app") as mock_celery:
            mock_celery.control.inspect.side_effect = ConnectionError("broker down")
            response = client.get("/api/v1/health/detailed")

        data = response.json()
        assert data["status"] == "degraded"
        assert data["components"]["celery"]["status"] == "unhealthy"
        assert data["components"]["database"]["status"] == "healthy"
