"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, SQLite in memory)
- An in-memory catalog gateway for state machine tests
- FakeRedis for the Redis session store
- Test data factories
"""
# Point the app at SQLite before anything imports agrimove.core.config
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_BACKEND", "memory")

import asyncio
from decimal import Decimal
from itertools import count
from typing import AsyncGenerator, Optional, Sequence

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from agrimove.core.exceptions import CatalogUnavailableError
from agrimove.db.database import Base, get_db
from agrimove.db.models import Farm, Produce, User, UserRole
from agrimove.domain.services.catalog_gateway import (
    CatalogGateway,
    FarmRecord,
    OrderItemRecord,
    OrderRecord,
    ProduceRecord,
    UserRecord,
)
from agrimove.domain.services.messaging import BaseWhatsAppProvider, reset_providers, set_whatsapp_provider
from agrimove.main import app
from agrimove.state_machine.session import TempOrderItem
from agrimove.state_machine.session_store import (
    InMemorySessionStore,
    reset_session_store,
    set_session_store,
)


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories (database)
# ============================================================================

@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        phone: str = "+254700000001",
        name: str = "Test User",
        role: UserRole = UserRole.BUYER,
        username: str | None = None,
    ) -> User:
        user = User(
            username=username or f"user{phone.lstrip('+')}",
            phone=phone,
            name=name,
            role=role.value,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def farm_factory(db_session: AsyncSession):
    """Factory for creating a farm for an existing farmer"""
    async def _create_farm(
        farmer_id: int,
        name: str = "Green Valley Farm",
        address: str = "Limuru Road, Kiambu",
        rating: float = 4.5,
    ) -> Farm:
        farm = Farm(farmer_id=farmer_id, name=name, address=address, rating=rating)
        db_session.add(farm)
        await db_session.commit()
        await db_session.refresh(farm)
        return farm

    return _create_farm


@pytest.fixture
def produce_factory(db_session: AsyncSession):
    """Factory for creating catalog produce"""
    async def _create_produce(
        farmer_id: int,
        name: str = "Tomatoes",
        price: str = "2.50",
        unit: str = "kg",
        quantity: str = "100",
        status: str = "active",
    ) -> Produce:
        produce = Produce(
            farmer_id=farmer_id,
            name=name,
            price=Decimal(price),
            unit=unit,
            quantity=Decimal(quantity),
            category="vegetables",
            status=status,
        )
        db_session.add(produce)
        await db_session.commit()
        await db_session.refresh(produce)
        return produce

    return _create_produce


# ============================================================================
# In-memory catalog gateway
# ============================================================================

class FakeCatalogGateway(CatalogGateway):
    """CatalogGateway over plain lists; ``fail`` makes every call raise"""

    def __init__(self) -> None:
        self.users: list[UserRecord] = []
        self.produce: list[ProduceRecord] = []
        self.farms: list[FarmRecord] = []
        self.orders: list[OrderRecord] = []
        self.order_items: list[OrderItemRecord] = []
        self.fail = False
        self.calls: list[str] = []
        self._ids = count(1)

    # -- seeding helpers --

    def add_user(self, phone: str, role: str = "buyer", name: str = "Jane Buyer") -> UserRecord:
        user = UserRecord(id=next(self._ids), name=name, phone=phone, role=role)
        self.users.append(user)
        return user

    def add_farm(self, farmer_id: int, name: str = "Green Valley Farm", rating: float = 4.5) -> FarmRecord:
        farm = FarmRecord(
            id=next(self._ids), farmer_id=farmer_id, name=name,
            address="Limuru Road", rating=rating, description="Family farm",
        )
        self.farms.append(farm)
        return farm

    def add_produce(
        self,
        farmer_id: int,
        name: str,
        price: str,
        unit: str = "kg",
        quantity: str = "100",
        status: str = "active",
    ) -> ProduceRecord:
        produce = ProduceRecord(
            id=next(self._ids), farmer_id=farmer_id, name=name, price=Decimal(price),
            unit=unit, quantity=Decimal(quantity), status=status,
        )
        self.produce.append(produce)
        return produce

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail:
            raise CatalogUnavailableError(operation, "simulated outage")

    # -- CatalogGateway --

    async def get_user_by_phone(self, phone: str) -> Optional[UserRecord]:
        self._check("get_user_by_phone")
        return next((u for u in self.users if u.phone == phone), None)

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        self._check("get_user")
        return next((u for u in self.users if u.id == user_id), None)

    async def get_all_produce(self) -> list[ProduceRecord]:
        self._check("get_all_produce")
        return list(self.produce)

    async def get_produce(self, produce_id: int) -> Optional[ProduceRecord]:
        self._check("get_produce")
        return next((p for p in self.produce if p.id == produce_id), None)

    async def get_produce_by_farmer(self, farmer_id: int) -> list[ProduceRecord]:
        self._check("get_produce_by_farmer")
        return [p for p in self.produce if p.farmer_id == farmer_id]

    async def get_all_farms(self) -> list[FarmRecord]:
        self._check("get_all_farms")
        return list(self.farms)

    async def get_farm(self, farm_id: int) -> Optional[FarmRecord]:
        self._check("get_farm")
        return next((f for f in self.farms if f.id == farm_id), None)

    async def get_farm_by_farmer(self, farmer_id: int) -> Optional[FarmRecord]:
        self._check("get_farm_by_farmer")
        return next((f for f in self.farms if f.farmer_id == farmer_id), None)

    async def get_orders_by_buyer(self, buyer_id: int) -> list[OrderRecord]:
        self._check("get_orders_by_buyer")
        return sorted((o for o in self.orders if o.buyer_id == buyer_id), key=lambda o: -o.id)

    async def get_order(self, order_id: int) -> Optional[OrderRecord]:
        self._check("get_order")
        return next((o for o in self.orders if o.id == order_id), None)

    async def get_order_items(self, order_id: int) -> list[OrderItemRecord]:
        self._check("get_order_items")
        return [i for i in self.order_items if i.order_id == order_id]

    async def create_order(
        self,
        buyer_id: int,
        items: Sequence[TempOrderItem],
        delivery_address: str,
        total: Decimal,
    ) -> OrderRecord:
        self._check("create_order")
        order = OrderRecord(
            id=next(self._ids), buyer_id=buyer_id, total=total,
            status="pending", delivery_address=delivery_address,
        )
        self.orders.append(order)
        for item in items:
            self.order_items.append(OrderItemRecord(
                id=next(self._ids), order_id=order.id, produce_id=item.produce_id,
                farmer_id=item.farmer_id, quantity=item.quantity, unit_price=item.unit_price,
            ))
        return order

    async def update_order_status(self, order_id: int, status: str) -> Optional[OrderRecord]:
        self._check("update_order_status")
        for index, order in enumerate(self.orders):
            if order.id == order_id:
                self.orders[index] = order.model_copy(update={"status": status})
                return self.orders[index]
        return None


@pytest.fixture
def gateway() -> FakeCatalogGateway:
    return FakeCatalogGateway()


@pytest.fixture
def seeded_gateway(gateway: FakeCatalogGateway) -> FakeCatalogGateway:
    """A farmer with a farm and three products (tomatoes 2.50/kg, maize 1.25/kg, milk 0.80/l)"""
    farmer = gateway.add_user("+254711000001", role="farmer", name="John Farmer")
    gateway.add_farm(farmer.id)
    gateway.add_produce(farmer.id, "Tomatoes", "2.50")
    gateway.add_produce(farmer.id, "Maize", "1.25", quantity="40")
    gateway.add_produce(farmer.id, "Milk", "0.80", unit="l")
    return gateway


# ============================================================================
# WhatsApp provider stub
# ============================================================================

class RecordingWhatsAppProvider(BaseWhatsAppProvider):
    """Collects outbound messages instead of calling Twilio"""

    def __init__(self, configured: bool = True, error: Exception | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self._configured = configured
        self._error = error

    @property
    def provider_name(self) -> str:
        return "recording"

    @property
    def is_configured(self) -> bool:
        return self._configured

    def normalize_phone(self, phone: str) -> str:
        return phone

    async def send_text(self, to: str, text: str) -> None:
        if self._error is not None:
            raise self._error
        self.sent.append((to, text))


@pytest.fixture
def whatsapp_provider() -> RecordingWhatsAppProvider:
    provider = RecordingWhatsAppProvider()
    set_whatsapp_provider(provider)
    return provider


# ============================================================================
# Global state reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from agrimove.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def session_store():
    """Fresh in-memory session store per test, installed process-wide"""
    store = InMemorySessionStore(timeout_seconds=300, lock_timeout_seconds=1.0)
    set_session_store(store)
    yield store
    reset_session_store()


@pytest.fixture(autouse=True)
def reset_whatsapp_provider():
    yield
    reset_providers()


# ============================================================================
# FakeRedis
# ============================================================================

class FakeRedisLock:
    """Subset of redis.asyncio.lock.Lock backed by an asyncio.Lock"""

    def __init__(self, redis: "FakeRedis", name: str, blocking_timeout: float | None) -> None:
        self._redis = redis
        self.name = name
        self._blocking_timeout = blocking_timeout
        self._owned = False

    async def acquire(self) -> bool:
        lock = self._redis._locks.setdefault(self.name, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._blocking_timeout)
        except asyncio.TimeoutError:
            return False
        self._owned = True
        return True

    async def release(self) -> None:
        from redis.exceptions import LockNotOwnedError

        if not self._owned:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        self._owned = False
        self._redis._locks[self.name].release()


class FakeRedis:
    """In-memory stand-in for Redis with the calls the session store makes"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def scan_iter(self, match: str | None = None):
        import fnmatch

        for key in list(self._store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def lock(self, name: str, timeout: float | None = None, blocking_timeout: float | None = None) -> FakeRedisLock:
        return FakeRedisLock(self, name, blocking_timeout)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
