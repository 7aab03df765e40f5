"""
Order status notifications

Called by the AgriMove back office when an order moves through its
lifecycle; the buyer gets the new status on WhatsApp.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from agrimove.api.dependencies.admin_auth import require_admin_api_key
from agrimove.core.exceptions import OrderNotFoundError
from agrimove.core.logging import get_logger
from agrimove.db.database import get_db
from agrimove.db.models.order import OrderStatus
from agrimove.domain.services.catalog_gateway import SqlCatalogGateway
from agrimove.domain.services.notification_service import send_order_update

logger = get_logger(__name__)

router = APIRouter()


class OrderNotifyRequest(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in OrderStatus.values():
            raise ValueError(f"status must be one of: {', '.join(OrderStatus.values())}")
        return v


class OrderNotifyResponse(BaseModel):
    order_id: int
    status: str
    notified: bool


@router.post(
    "/{order_id}/notify",
    response_model=OrderNotifyResponse,
    summary="Update order status and notify the buyer",
    responses={
        401: {"description": "Missing API key"},
        403: {"description": "Invalid API key"},
        404: {"description": "Order not found"},
    },
)
async def notify_order_status(
    order_id: int,
    data: OrderNotifyRequest,
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> OrderNotifyResponse:
    gateway = SqlCatalogGateway(db)
    order = await gateway.update_order_status(order_id, data.status)
    if order is None:
        raise OrderNotFoundError(order_id)

    notified = await send_order_update(gateway, order_id, data.status)
    if not notified:
        logger.warning(
            "Order status updated but buyer was not notified",
            extra_data={"order_id": order_id, "status": data.status},
        )
    return OrderNotifyResponse(order_id=order_id, status=data.status, notified=notified)
