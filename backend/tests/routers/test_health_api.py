# tests/routers/test_health_api.py
"""
Tests for the root and health endpoints.
"""


class TestHealthEndpoints:
    """Liveness, readiness and the combined health check."""

    async def test_root_returns_app_info(self, client):
        """Should point to the API docs."""
        response = await client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["docs"] == "/docs"
        assert body["redoc"] == "/redoc"
        assert body["message"].startswith("Welcome to ")

    async def test_liveness(self, client):
        """Should answer alive without touching dependencies."""
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_readiness(self, client):
        """Should be ready while the database answers."""
        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    async def test_health_is_degraded_without_market_data(self, client):
        """Should report degraded when market data is disabled."""
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["database"]["database"] == "sqlite"
        assert body["checks"]["database"]["critical"] is True
        assert body["checks"]["market_data"] == {"status": "disabled", "critical": False}

    async def test_health_does_not_require_auth(self, client):
        """Should not ask for a bearer token."""
        response = await client.get("/health", headers={"Authorization": "Bearer nonsense"})

        assert response.status_code == 200
