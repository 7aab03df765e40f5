"""
Fixtures and helpers for end-to-end conversation scenarios over HTTP.
"""
from decimal import Decimal

import pytest

from agrimove.db.models import UserRole

USSD_SERVICE_CODE = "*384*123#"


class UssdDial:
    """One USSD dial: keeps the cumulative text the way the gateway does"""

    def __init__(self, client, phone: str, session_id: str) -> None:
        self.client = client
        self.phone = phone
        self.session_id = session_id
        self.inputs: list[str] = []

    async def send(self, text: str = ""):
        if text:
            self.inputs.append(text)
        response = await self.client.post(
            "/api/ussd",
            data={
                "sessionId": self.session_id,
                "serviceCode": USSD_SERVICE_CODE,
                "phoneNumber": self.phone,
                "text": "*".join(self.inputs),
            },
        )
        assert response.status_code == 200
        return response.text

    async def resend(self):
        """Gateway retry of the last request"""
        response = await self.client.post(
            "/api/ussd",
            data={
                "sessionId": self.session_id,
                "serviceCode": USSD_SERVICE_CODE,
                "phoneNumber": self.phone,
                "text": "*".join(self.inputs),
            },
        )
        return response.text


@pytest.fixture
async def marketplace(user_factory, farm_factory, produce_factory):
    """A farmer with a farm and two products, plus a registered buyer"""
    farmer = await user_factory(phone="+254711000001", name="John Farmer", role=UserRole.FARMER)
    await farm_factory(farmer.id)
    tomatoes = await produce_factory(farmer.id, name="Tomatoes", price="2.50")
    onions = await produce_factory(farmer.id, name="Onions", price="1.25")
    buyer = await user_factory(phone="+254722000001", name="Jane Buyer", role=UserRole.BUYER)
    return {
        "farmer": farmer,
        "buyer": buyer,
        "tomatoes": tomatoes,
        "onions": onions,
        "cart_total": Decimal("7.50"),
    }
