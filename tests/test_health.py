"""Tests for health endpoints."""

from adgenius import __version__


class TestHealthEndpoint:
    """Liveness and readiness probes."""

    def test_health_returns_200(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}

    def test_readiness_checks_database(self, client):
        response = client.get("/health/readiness")

        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "ok"
