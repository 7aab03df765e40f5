"""
Liveness endpoint tests.
"""
import httpx
import pytest


class TestLivenessProbe:

    @pytest.mark.unit
    async def test_liveness_returns_healthy(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.unit
    async def test_liveness_needs_no_admin_key(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health", headers={"X-Admin-API-Key": "wrong"})
        assert response.status_code == 200

    @pytest.mark.unit
    async def test_liveness_echoes_correlation_id(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health", headers={"X-Correlation-ID": "abcd1234"})
        assert response.headers["X-Correlation-ID"] == "abcd1234"
