"""
Tests for the outbound WhatsApp notifier
"""
from decimal import Decimal

import pytest

from agrimove.core.exceptions import CircuitBreakerOpenError, WhatsAppError
from agrimove.domain.services.catalog_gateway import OrderItemRecord, OrderRecord
from agrimove.domain.services.messaging import set_whatsapp_provider
from agrimove.domain.services.notification_service import (
    format_order_details,
    send_message,
    send_notifications,
    send_order_update,
)
from agrimove.state_machine.session import TempOrderItem
from tests.conftest import RecordingWhatsAppProvider


BUYER_PHONE = "+254722000001"


async def _place_order(gateway, buyer_phone: str = BUYER_PHONE) -> OrderRecord:
    buyer = gateway.add_user(buyer_phone, role="buyer")
    tomatoes = gateway.produce[0]
    maize = gateway.produce[1]
    return await gateway.create_order(
        buyer.id,
        [
            TempOrderItem(produce_id=tomatoes.id, farmer_id=tomatoes.farmer_id,
                          quantity=Decimal("2"), unit_price=tomatoes.price),
            TempOrderItem(produce_id=maize.id, farmer_id=maize.farmer_id,
                          quantity=Decimal("1.5"), unit_price=maize.price),
        ],
        "12 Market Road",
        Decimal("6.875"),
    )


class TestSendMessage:

    @pytest.mark.unit
    async def test_success(self, whatsapp_provider) -> None:
        assert await send_message(BUYER_PHONE, "hello") is True
        assert whatsapp_provider.sent == [(BUYER_PHONE, "hello")]

    @pytest.mark.unit
    async def test_unconfigured_provider_returns_false(self) -> None:
        provider = RecordingWhatsAppProvider(configured=False)

        assert await send_message(BUYER_PHONE, "hello", provider=provider) is False
        assert provider.sent == []

    @pytest.mark.unit
    @pytest.mark.parametrize("error", [
        WhatsAppError("rejected"),
        CircuitBreakerOpenError("whatsapp", 30.0),
        RuntimeError("socket closed"),
    ])
    async def test_failure_returns_false(self, error) -> None:
        provider = RecordingWhatsAppProvider(error=error)

        assert await send_message(BUYER_PHONE, "hello", provider=provider) is False

    @pytest.mark.unit
    async def test_send_notifications_delivers_all(self, whatsapp_provider) -> None:
        await send_notifications([(BUYER_PHONE, "one"), ("+254733000002", "two")])

        assert whatsapp_provider.sent == [(BUYER_PHONE, "one"), ("+254733000002", "two")]

    @pytest.mark.unit
    async def test_send_notifications_continues_after_failure(self) -> None:
        provider = RecordingWhatsAppProvider(error=WhatsAppError("rejected"))
        set_whatsapp_provider(provider)

        # Must not raise even though every send fails
        await send_notifications([(BUYER_PHONE, "one"), (BUYER_PHONE, "two")])


class TestFormatOrderDetails:

    @pytest.mark.unit
    def test_lists_items_with_names(self) -> None:
        order = OrderRecord(
            id=7, buyer_id=1, total=Decimal("6.875"), status="confirmed",
            delivery_address="12 Market Road",
        )
        items = [
            OrderItemRecord(id=1, order_id=7, produce_id=3, farmer_id=1,
                            quantity=Decimal("2"), unit_price=Decimal("2.50")),
            OrderItemRecord(id=2, order_id=7, produce_id=99, farmer_id=1,
                            quantity=Decimal("1.5"), unit_price=Decimal("1.25")),
        ]

        text = format_order_details(order, items, {3: "Tomatoes"})

        assert text.splitlines()[0] == "Order #7 Details"
        assert "Status: confirmed" in text
        assert "Total: $6.88" in text
        assert "Payment status: pending" in text
        assert "1. Tomatoes x2 - $5.00" in text
        assert "2. Unknown product x1.5 - $1.88" in text
        assert text.endswith("Delivery Address: 12 Market Road")


class TestSendOrderUpdate:

    @pytest.mark.unit
    async def test_notifies_buyer(self, seeded_gateway, whatsapp_provider) -> None:
        order = await _place_order(seeded_gateway)

        assert await send_order_update(seeded_gateway, order.id, "in_transit") is True

        [(phone, text)] = whatsapp_provider.sent
        assert phone == BUYER_PHONE
        assert f"Your order #{order.id} status has been updated to in_transit" in text
        assert "Tomatoes x2" in text
        assert "Maize x1.5" in text
        assert f'Reply with "status {order.id}"' in text

    @pytest.mark.unit
    async def test_unknown_order(self, seeded_gateway, whatsapp_provider) -> None:
        assert await send_order_update(seeded_gateway, 999, "in_transit") is False
        assert whatsapp_provider.sent == []

    @pytest.mark.unit
    async def test_buyer_without_phone(self, seeded_gateway, whatsapp_provider) -> None:
        order = await _place_order(seeded_gateway, buyer_phone="")

        assert await send_order_update(seeded_gateway, order.id, "in_transit") is False
        assert whatsapp_provider.sent == []
