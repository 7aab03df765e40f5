"""
Catalog/Order Gateway

Read access to users, produce, farms and orders, and the two writes the
messaging engine performs: order creation at checkout and order status
updates. The state machine depends only on CatalogGateway; the SQLAlchemy
implementation is wired in by the API layer.
"""
import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agrimove.core.circuit_breaker import get_catalog_circuit_breaker
from agrimove.core.config import settings
from agrimove.core.exceptions import (
    CatalogUnavailableError,
    InvalidOrderStatusError,
    ServiceTimeoutError,
)
from agrimove.core.logging import get_logger, log_async_operation
from agrimove.db.models import Farm, Order, OrderItem, OrderStatus, Produce, User
from agrimove.state_machine.session import TempOrderItem

logger = get_logger(__name__)

T = TypeVar("T")


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserRecord(_Record):
    id: int
    name: str
    phone: str
    role: str


class ProduceRecord(_Record):
    id: int
    farmer_id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    unit: str
    quantity: Decimal
    category: str = ""
    status: str = "active"

    @property
    def is_available(self) -> bool:
        return self.status == "active" and self.quantity > 0


class FarmRecord(_Record):
    id: int
    farmer_id: int
    name: str
    description: Optional[str] = None
    address: str
    rating: float = 0


class OrderRecord(_Record):
    id: int
    buyer_id: int
    total: Decimal
    status: str
    payment_status: str = "pending"
    delivery_address: str
    created_at: Optional[datetime] = None


class OrderItemRecord(_Record):
    id: int
    order_id: int
    produce_id: int
    farmer_id: int
    quantity: Decimal
    unit_price: Decimal


class CatalogGateway(ABC):
    """Data access consumed by the menu state machine and the notifier"""

    @abstractmethod
    async def get_user_by_phone(self, phone: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[UserRecord]: ...

    @abstractmethod
    async def get_all_produce(self) -> list[ProduceRecord]: ...

    @abstractmethod
    async def get_produce(self, produce_id: int) -> Optional[ProduceRecord]: ...

    @abstractmethod
    async def get_produce_by_farmer(self, farmer_id: int) -> list[ProduceRecord]: ...

    @abstractmethod
    async def get_all_farms(self) -> list[FarmRecord]: ...

    @abstractmethod
    async def get_farm(self, farm_id: int) -> Optional[FarmRecord]: ...

    @abstractmethod
    async def get_farm_by_farmer(self, farmer_id: int) -> Optional[FarmRecord]: ...

    @abstractmethod
    async def get_orders_by_buyer(self, buyer_id: int) -> list[OrderRecord]: ...

    @abstractmethod
    async def get_order(self, order_id: int) -> Optional[OrderRecord]: ...

    @abstractmethod
    async def get_order_items(self, order_id: int) -> list[OrderItemRecord]: ...

    @abstractmethod
    async def create_order(
        self,
        buyer_id: int,
        items: Sequence[TempOrderItem],
        delivery_address: str,
        total: Decimal,
    ) -> OrderRecord: ...

    @abstractmethod
    async def update_order_status(self, order_id: int, status: str) -> Optional[OrderRecord]: ...


class SqlCatalogGateway(CatalogGateway):
    """
    CatalogGateway over the AgriMove relational schema.

    Every call is bounded by GATEWAY_TIMEOUT_SECONDS and runs through the
    "catalog" circuit breaker. Driver errors surface as
    CatalogUnavailableError and timeouts as ServiceTimeoutError, both
    ExternalServiceException subclasses the state machine turns into a
    "service temporarily unavailable" reply.
    """

    def __init__(self, db: AsyncSession, timeout_seconds: Optional[float] = None):
        self.db = db
        self.timeout_seconds = timeout_seconds or settings.GATEWAY_TIMEOUT_SECONDS
        self._breaker = get_catalog_circuit_breaker()

    async def _call(
        self,
        operation: str,
        func: Callable[[], Awaitable[T]],
    ) -> T:
        async def guarded() -> T:
            try:
                return await asyncio.wait_for(func(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                await self.db.rollback()
                logger.warning(
                    "Catalog call timed out",
                    extra_data={"operation": operation, "timeout_seconds": self.timeout_seconds}
                )
                raise ServiceTimeoutError("catalog", self.timeout_seconds)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    "Catalog query failed",
                    extra_data={"operation": operation, "error": str(e)},
                    exc_info=True
                )
                raise CatalogUnavailableError(operation, type(e).__name__) from e

        return await self._breaker.execute(guarded)

    async def _scalar(self, operation: str, stmt: Any, record: type[_Record]) -> Any:
        async def run():
            result = await self.db.execute(stmt)
            row = result.scalar_one_or_none()
            return record.model_validate(row) if row is not None else None

        return await self._call(operation, run)

    async def _scalars(self, operation: str, stmt: Any, record: type[_Record]) -> list:
        async def run():
            result = await self.db.execute(stmt)
            return [record.model_validate(row) for row in result.scalars().all()]

        return await self._call(operation, run)

    async def get_user_by_phone(self, phone: str) -> Optional[UserRecord]:
        return await self._scalar(
            "get_user_by_phone", select(User).where(User.phone == phone), UserRecord
        )

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        return await self._scalar("get_user", select(User).where(User.id == user_id), UserRecord)

    async def get_all_produce(self) -> list[ProduceRecord]:
        return await self._scalars(
            "get_all_produce", select(Produce).order_by(Produce.id), ProduceRecord
        )

    async def get_produce(self, produce_id: int) -> Optional[ProduceRecord]:
        return await self._scalar(
            "get_produce", select(Produce).where(Produce.id == produce_id), ProduceRecord
        )

    async def get_produce_by_farmer(self, farmer_id: int) -> list[ProduceRecord]:
        return await self._scalars(
            "get_produce_by_farmer",
            select(Produce).where(Produce.farmer_id == farmer_id).order_by(Produce.id),
            ProduceRecord,
        )

    async def get_all_farms(self) -> list[FarmRecord]:
        return await self._scalars("get_all_farms", select(Farm).order_by(Farm.id), FarmRecord)

    async def get_farm(self, farm_id: int) -> Optional[FarmRecord]:
        return await self._scalar("get_farm", select(Farm).where(Farm.id == farm_id), FarmRecord)

    async def get_farm_by_farmer(self, farmer_id: int) -> Optional[FarmRecord]:
        return await self._scalar(
            "get_farm_by_farmer", select(Farm).where(Farm.farmer_id == farmer_id), FarmRecord
        )

    async def get_orders_by_buyer(self, buyer_id: int) -> list[OrderRecord]:
        # Most recent first; the menu shows the top five
        return await self._scalars(
            "get_orders_by_buyer",
            select(Order).where(Order.buyer_id == buyer_id).order_by(Order.id.desc()),
            OrderRecord,
        )

    async def get_order(self, order_id: int) -> Optional[OrderRecord]:
        return await self._scalar("get_order", select(Order).where(Order.id == order_id), OrderRecord)

    async def get_order_items(self, order_id: int) -> list[OrderItemRecord]:
        return await self._scalars(
            "get_order_items",
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id),
            OrderItemRecord,
        )

    @log_async_operation("create_order")
    async def create_order(
        self,
        buyer_id: int,
        items: Sequence[TempOrderItem],
        delivery_address: str,
        total: Decimal,
    ) -> OrderRecord:
        async def run() -> OrderRecord:
            order = Order(
                buyer_id=buyer_id,
                total=total,
                delivery_address=delivery_address,
                status=OrderStatus.PENDING.value,
            )
            self.db.add(order)
            await self.db.flush()

            for item in items:
                self.db.add(OrderItem(
                    order_id=order.id,
                    produce_id=item.produce_id,
                    farmer_id=item.farmer_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                ))

            await self.db.commit()
            await self.db.refresh(order)
            return OrderRecord.model_validate(order)

        order = await self._call("create_order", run)
        logger.info(
            "Order created",
            extra_data={
                "order_id": order.id,
                "buyer_id": buyer_id,
                "items": len(items),
                "total": str(total),
            }
        )
        return order

    async def update_order_status(self, order_id: int, status: str) -> Optional[OrderRecord]:
        allowed = OrderStatus.values()
        if status not in allowed:
            raise InvalidOrderStatusError(status, allowed)

        async def run() -> Optional[OrderRecord]:
            result = await self.db.execute(select(Order).where(Order.id == order_id))
            order = result.scalar_one_or_none()
            if order is None:
                return None
            order.status = status
            await self.db.commit()
            await self.db.refresh(order)
            return OrderRecord.model_validate(order)

        order = await self._call("update_order_status", run)
        if order is not None:
            logger.info(
                "Order status updated",
                extra_data={"order_id": order_id, "status": status}
            )
        return order
