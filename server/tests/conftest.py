"""Test configuration and fixtures."""

import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from reservations.core.cache import InMemoryCache
from reservations.core.database import Base, build_engine, build_session_factory
from reservations.core.dependencies import get_db
from reservations.core.events import EventDispatcher, EventType
from reservations.core.exceptions import ValidationError
from reservations.models import *  # noqa: F403 - Import all models
from reservations.models.inventory import InventoryUnit
from reservations.models.resource import Resource, ResourceKind
from reservations.schemas.catalog import AddUnitRequest, CreateResourceRequest
from reservations.schemas.common import Money
from reservations.services.catalog_service import CatalogService
from reservations.services.payment_gateway import PaymentGateway, PaymentIntent, SettlementStatus
from reservations.services.reservation_service import ReservationService, RetryPolicy

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

HOST_ID = "host-1"
SELLER_ID = "seller-1"
VALID_SIGNATURE = "t=1,v1=valid"


class FakePaymentGateway(PaymentGateway):
    """Scriptable gateway that records every call."""

    def __init__(self):
        self.statuses: Dict[str, SettlementStatus] = {}
        self.created: List[Dict[str, Any]] = []
        self.refunded: List[str] = []
        self.refund_keys: List[Optional[str]] = []
        self.cancelled: List[str] = []
        self.create_error: Optional[Exception] = None
        self.refund_result: Any = True
        self.cancel_result: Any = True

    async def create_intent(self, amount, currency, description, metadata) -> PaymentIntent:
        if self.create_error is not None:
            raise self.create_error
        reference = f"pi_test_{len(self.created) + 1}"
        self.created.append({
            "reference": reference,
            "amount": amount,
            "currency": currency,
            "description": description,
            "metadata": metadata,
        })
        self.statuses[reference] = SettlementStatus.PENDING
        return PaymentIntent(provider_reference=reference, client_secret=f"{reference}_secret")

    def settle(self, reference: str, status: SettlementStatus = SettlementStatus.SUCCEEDED) -> None:
        self.statuses[reference] = status

    async def get_status(self, provider_reference: str) -> SettlementStatus:
        return self.statuses.get(provider_reference, SettlementStatus.PENDING)

    async def refund(
        self,
        provider_reference: str,
        amount: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        self.refunded.append(provider_reference)
        self.refund_keys.append(idempotency_key)
        if isinstance(self.refund_result, Exception):
            raise self.refund_result
        return self.refund_result

    async def cancel(self, provider_reference: str) -> bool:
        self.cancelled.append(provider_reference)
        if isinstance(self.cancel_result, Exception):
            raise self.cancel_result
        return self.cancel_result

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if signature != VALID_SIGNATURE:
            raise ValidationError("Invalid webhook signature")
        return json.loads(payload)


class RecordingEventBus(EventDispatcher):
    """Keeps emitted events in order instead of delivering them."""

    def __init__(self):
        self.events: List[Tuple[EventType, Dict[str, Any]]] = []

    def emit(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self.events.append((event_type, payload))

    @property
    def types(self) -> List[EventType]:
        return [event_type for event_type, _ in self.events]


def stripe_event(event_id: str, event_type: str, intent: Dict[str, Any]) -> bytes:
    """Build a webhook body shaped like a Stripe event."""
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": intent}}).encode()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = build_engine(TEST_DATABASE_URL)

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async with build_session_factory(test_engine)() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def file_engine(tmp_path):
    """File-backed SQLite engine whose transactions take the write lock up front."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'reservations.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return build_session_factory(file_engine)


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def events():
    return RecordingEventBus()


@pytest.fixture
def retry_policy():
    """Retry budget without sleeping between attempts."""
    return RetryPolicy(attempts=3, base_delay_ms=0, jitter_ms=0)


@pytest.fixture
def service(test_session, gateway, cache, events, retry_policy):
    return ReservationService(test_session, gateway, cache=cache, events=events, retry_policy=retry_policy)


@pytest.fixture
def catalog(test_session, cache):
    return CatalogService(test_session, cache=cache)


def detach(catalog: CatalogService, resource: Resource, unit: InventoryUnit) -> Tuple[Resource, InventoryUnit]:
    """Detach seeded rows so they stay readable after a service rolls the session back."""
    catalog.db.expunge(unit)
    catalog.db.expunge(resource)
    return resource, unit


async def create_experience(
    catalog: CatalogService,
    capacity: int = 10,
    price: int = 25000,
    owner_id: str = HOST_ID,
    title: str = "Mezcal Tasting Workshop",
) -> Tuple[Resource, InventoryUnit]:
    """Create an experience with one time slot starting tomorrow."""
    resource = await catalog.create_resource(
        CreateResourceRequest(
            kind=ResourceKind.EXPERIENCE,
            title=title,
            unit_price=Money(amount=price, currency="MXN"),
        ),
        owner_id=owner_id,
    )
    starts_at = datetime.utcnow().replace(microsecond=0) + timedelta(days=1)
    unit = await catalog.add_unit(
        AddUnitRequest(
            resource_id=resource.id,
            capacity=capacity,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(hours=3),
        ),
        actor=owner_id,
    )
    return detach(catalog, resource, unit)


async def create_product(
    catalog: CatalogService,
    stock: int = 5,
    price: int = 35000,
    owner_id: str = SELLER_ID,
) -> Tuple[Resource, InventoryUnit]:
    """Create a product with its stock unit."""
    resource = await catalog.create_resource(
        CreateResourceRequest(
            kind=ResourceKind.PRODUCT,
            title="Hand-woven Huipil",
            unit_price=Money(amount=price, currency="MXN"),
        ),
        owner_id=owner_id,
    )
    unit = await catalog.add_unit(AddUnitRequest(resource_id=resource.id, capacity=stock), actor=owner_id)
    return detach(catalog, resource, unit)


@pytest_asyncio.fixture
async def experience(catalog):
    """An experience with a ten-seat slot priced at 250.00 MXN."""
    return await create_experience(catalog)


@pytest_asyncio.fixture
async def product(catalog):
    """A product with five items in stock priced at 350.00 MXN."""
    return await create_product(catalog)


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, gateway, cache, events):
    """Create a test FastAPI application without lifespan or middleware."""
    from fastapi import FastAPI

    from reservations.main import register_exception_handlers, register_routers

    app = FastAPI(title="Festival Reservations API (Test)", version="1.0.0-test")

    app.state.payment_gateway = gateway
    app.state.cache = cache
    app.state.event_bus = events

    register_exception_handlers(app)
    register_routers(app)

    # Override database dependency
    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_experience(catalog):
    """Factory for experiences with a single slot."""

    async def factory(**kwargs):
        return await create_experience(catalog, **kwargs)

    return factory


@pytest.fixture
def make_product(catalog):
    """Factory for products with a stock unit."""

    async def factory(**kwargs):
        return await create_product(catalog, **kwargs)

    return factory


@pytest.fixture
def webhook_event():
    """Builder for signed webhook deliveries: returns (body, headers)."""

    def build(event_id: str, event_type: str, intent: Dict[str, Any]):
        return stripe_event(event_id, event_type, intent), {"Stripe-Signature": VALID_SIGNATURE}

    return build


@pytest.fixture
def seed_file_experience(file_session_factory):
    """Factory seeding an experience in the file database; returns (resource_id, unit_id)."""

    async def factory(**kwargs):
        async with file_session_factory() as db:
            resource, unit = await create_experience(CatalogService(db), **kwargs)
            return resource.id, unit.id

    return factory
