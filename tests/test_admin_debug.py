"""
Unit tests for the Admin Debug endpoints.

Covers:
1. API key check
2. Circuit breaker status
3. Session count, inspection and forced end
"""
from unittest.mock import patch

import pytest

from agrimove.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from agrimove.core.config import settings
from agrimove.state_machine.states import MenuState, Role

ADMIN_KEY = "test-admin-key"
HEADERS = {"X-Admin-API-Key": ADMIN_KEY}


@pytest.fixture(autouse=True)
def admin_key():
    with patch.object(settings, "ADMIN_API_KEY", ADMIN_KEY):
        yield


async def _start_session(store, session_id: str = "ATUid_1", phone: str = "+254722000001"):
    async with store.session(phone, session_id, "ussd") as session:
        session.current_menu = MenuState.MAIN_MENU
        session.user_data.role = Role.BUYER
    return session


class TestAdminAuth:

    @pytest.mark.unit
    async def test_missing_key(self, test_client) -> None:
        response = await test_client.get("/api/admin/debug/circuit-breakers")
        assert response.status_code == 401

    @pytest.mark.unit
    async def test_wrong_key(self, test_client) -> None:
        response = await test_client.get(
            "/api/admin/debug/circuit-breakers", headers={"X-Admin-API-Key": "wrong"}
        )
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_disabled_without_configured_key(self, test_client) -> None:
        with patch.object(settings, "ADMIN_API_KEY", ""):
            response = await test_client.get("/api/admin/debug/sessions/count", headers=HEADERS)
        assert response.status_code == 403


class TestCircuitBreakerStatus:

    @pytest.mark.unit
    async def test_lists_known_breakers(self, test_client) -> None:
        response = await test_client.get("/api/admin/debug/circuit-breakers", headers=HEADERS)

        assert response.status_code == 200
        services = {item["service"]: item for item in response.json()}
        assert {"catalog", "whatsapp"} <= set(services)
        assert services["catalog"]["state"] == "closed"
        assert services["catalog"]["retry_after_seconds"] == 0

    @pytest.mark.unit
    async def test_reports_open_breaker(self, test_client) -> None:
        breaker = CircuitBreaker.get_instance("whatsapp", CircuitBreakerConfig(failure_threshold=1))
        breaker.record_failure(RuntimeError("twilio down"))

        response = await test_client.get("/api/admin/debug/circuit-breakers", headers=HEADERS)

        services = {item["service"]: item for item in response.json()}
        assert services["whatsapp"]["state"] == "open"
        assert services["whatsapp"]["failure_count"] == 1
        assert services["whatsapp"]["retry_after_seconds"] > 0


class TestSessions:

    @pytest.mark.unit
    async def test_count(self, test_client, session_store) -> None:
        await _start_session(session_store, "ATUid_1")
        await _start_session(session_store, "wa:+254722000002", phone="+254722000002")

        response = await test_client.get("/api/admin/debug/sessions/count", headers=HEADERS)

        assert response.json() == {"backend": "InMemorySessionStore", "active_sessions": 2}

    @pytest.mark.unit
    async def test_inspect(self, test_client, session_store) -> None:
        await _start_session(session_store)

        response = await test_client.get("/api/admin/debug/sessions/ATUid_1", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["current_menu"] == "MAIN_MENU"
        assert body["channel"] == "ussd"
        assert body["phone_number"] == "+25472200****"
        assert body["user_data"]["role"] == "buyer"
        assert body["idle_seconds"] >= 0

    @pytest.mark.unit
    async def test_inspect_unknown(self, test_client) -> None:
        response = await test_client.get("/api/admin/debug/sessions/nope", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_6002"

    @pytest.mark.unit
    async def test_end_session(self, test_client, session_store) -> None:
        await _start_session(session_store)

        response = await test_client.delete("/api/admin/debug/sessions/ATUid_1", headers=HEADERS)

        assert response.status_code == 204
        assert await session_store.get("ATUid_1") is None

    @pytest.mark.unit
    async def test_end_unknown_session(self, test_client) -> None:
        response = await test_client.delete("/api/admin/debug/sessions/nope", headers=HEADERS)
        assert response.status_code == 404
