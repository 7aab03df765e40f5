"""
Notification Service - outbound WhatsApp pushes

``send_message`` is the only entry point other code needs. It never raises:
a failed or unconfigured delivery is logged and reported as False, so a
push can never break a conversation turn or an order update.
"""
from typing import Optional, Sequence

from agrimove.core.exceptions import AppException
from agrimove.core.logging import get_logger
from agrimove.core.validation import PhoneNumberValidator
from agrimove.domain.services.catalog_gateway import (
    CatalogGateway,
    OrderItemRecord,
    OrderRecord,
)
from agrimove.domain.services.messaging import BaseWhatsAppProvider, get_whatsapp_provider
from agrimove.state_machine.messages import money, quantity

logger = get_logger(__name__)


async def send_message(
    phone_number: str,
    text: str,
    provider: Optional[BaseWhatsAppProvider] = None,
) -> bool:
    """Push ``text`` to ``phone_number``; True only if the provider accepted it"""
    provider = provider or get_whatsapp_provider()
    phone_masked = PhoneNumberValidator.mask(phone_number)

    if not provider.is_configured:
        logger.info(
            "WhatsApp provider not configured, message not sent",
            extra_data={"phone": phone_masked, "length": len(text)},
        )
        return False

    try:
        await provider.send_text(phone_number, text)
    except AppException as e:
        logger.error(
            "WhatsApp message delivery failed",
            extra_data={
                "phone": phone_masked,
                "provider": provider.provider_name,
                "error_code": e.error_code.value,
                "error": e.message,
            },
        )
        return False
    except Exception as e:
        logger.error(
            "Unexpected error sending WhatsApp message",
            extra_data={"phone": phone_masked, "provider": provider.provider_name, "error": str(e)},
            exc_info=True,
        )
        return False

    logger.info(
        "WhatsApp message sent",
        extra_data={"phone": phone_masked, "provider": provider.provider_name},
    )
    return True


async def send_notifications(notifications: Sequence[tuple[str, str]]) -> None:
    """Deliver the follow-up pushes a turn produced; used as a background task"""
    for phone_number, text in notifications:
        await send_message(phone_number, text)


def format_order_details(
    order: OrderRecord,
    items: Sequence[OrderItemRecord],
    names: Optional[dict[int, str]] = None,
) -> str:
    names = names or {}
    lines = [
        f"Order #{order.id} Details",
        f"Status: {order.status}",
        f"Total: ${money(order.total)}",
        f"Payment status: {order.payment_status}",
        "",
        "Items:",
    ]
    for index, item in enumerate(items, start=1):
        name = names.get(item.produce_id, "Unknown product")
        lines.append(
            f"{index}. {name} x{quantity(item.quantity)} - ${money(item.unit_price * item.quantity)}"
        )
    lines.append("")
    lines.append(f"Delivery Address: {order.delivery_address}")
    return "\n".join(lines)


async def build_order_update(
    gateway: CatalogGateway,
    order: OrderRecord,
    status: str,
) -> Optional[tuple[str, str]]:
    """(buyer phone, message) for a status change, or None if the buyer is unknown"""
    buyer = await gateway.get_user(order.buyer_id)
    if buyer is None or not buyer.phone:
        logger.warning(
            "Order update skipped: buyer has no phone",
            extra_data={"order_id": order.id, "buyer_id": order.buyer_id},
        )
        return None

    items = await gateway.get_order_items(order.id)
    names = {}
    for produce_id in {item.produce_id for item in items}:
        produce = await gateway.get_produce(produce_id)
        if produce is not None:
            names[produce_id] = produce.name

    message = (
        f"AgriMove: Your order #{order.id} status has been updated to {status}.\n\n"
        f"{format_order_details(order, items, names)}\n\n"
        f'Reply with "status {order.id}" for the latest updates.'
    )
    return buyer.phone, message


async def send_order_update(gateway: CatalogGateway, order_id: int, status: str) -> bool:
    """Tell the buyer of ``order_id`` about its new status"""
    order = await gateway.get_order(order_id)
    if order is None:
        logger.warning("Order update skipped: order not found", extra_data={"order_id": order_id})
        return False

    update = await build_order_update(gateway, order, status)
    if update is None:
        return False

    phone, message = update
    return await send_message(phone, message)
