"""
Test configuration and shared fixtures.

Uses SQLite in-memory database for fast, isolated tests and a mocked
Stripe gateway in place of the Stripe API.
"""
import uuid
from datetime import datetime
from typing import AsyncGenerator, Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.models.base import Base
from app.models.enums import SubscriptionStatus
from app.models.subscription import Subscription
from app.services.customer_resolver import CustomerResolver
from app.services.payments import PaymentRecorder
from app.services.reconciler import SubscriptionReconciler
from app.services.stripe_gateway import StripeGateway

# SQLite async engine for tests, one in-memory database per test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Stripe epoch seconds used across tests (UTC), one month apart
PERIOD_1_START = 1700000000  # 2023-11-14 22:13:20 UTC
PERIOD_1_END = 1702678400    # 2023-12-15 22:13:20 UTC
PERIOD_2_END = 1705356800    # 2024-01-15 22:13:20 UTC

# Same instants as stored: shifted to UTC-3, naive
LOCAL_PERIOD_1_START = datetime(2023, 11, 14, 19, 13, 20)
LOCAL_PERIOD_1_END = datetime(2023, 12, 15, 19, 13, 20)
LOCAL_PERIOD_2_END = datetime(2024, 1, 15, 19, 13, 20)


def make_stripe_subscription(
    sub_id: str = "sub_1",
    customer: str = "cus_1",
    status: str = "active",
    start: Optional[int] = PERIOD_1_START,
    end: Optional[int] = PERIOD_1_END,
    **kwargs,
) -> dict:
    """Helper to build a Stripe subscription object."""
    subscription = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_start": start,
        "current_period_end": end,
        "canceled_at": None,
        "metadata": {},
        "items": {"data": [{"price": {"id": "price_1", "nickname": None, "recurring": None}}]},
    }
    subscription.update(kwargs)
    return subscription


def make_stripe_invoice(
    invoice_id: str = "in_1",
    customer: str = "cus_1",
    status: str = "paid",
    amount_paid: int = 1999,
    subscription: Optional[str] = "sub_1",
    **kwargs,
) -> dict:
    """Helper to build a Stripe invoice object."""
    invoice = {
        "id": invoice_id,
        "object": "invoice",
        "customer": customer,
        "status": status,
        "amount_paid": amount_paid,
        "subscription": subscription,
        "payment_intent": None,
        "created": PERIOD_1_START,
    }
    invoice.update(kwargs)
    return invoice


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> MagicMock:
    """Mocked Stripe gateway: customer cus_1 belongs to user u1."""
    mock = MagicMock(spec=StripeGateway)
    mock.retrieve_customer.return_value = {"id": "cus_1", "metadata": {"userId": "u1"}}
    return mock


@pytest.fixture
def resolver(db_session: AsyncSession, gateway: MagicMock) -> CustomerResolver:
    return CustomerResolver(db_session, gateway)


@pytest.fixture
def reconciler(db_session: AsyncSession, gateway: MagicMock, resolver: CustomerResolver) -> SubscriptionReconciler:
    return SubscriptionReconciler(db_session, gateway, resolver)


@pytest.fixture
def recorder(db_session: AsyncSession, resolver: CustomerResolver) -> PaymentRecorder:
    return PaymentRecorder(db_session, resolver)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, gateway: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    """Test HTTP client with overridden database and Stripe dependencies."""
    from app.main import app
    from app.database import get_async_session
    from app.api.deps import get_stripe_gateway

    async def override_get_async_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def active_subscription(db_session: AsyncSession) -> Subscription:
    """An active local period for user u1 / sub_1."""
    row = Subscription(
        id=uuid.uuid4(),
        user_id="u1",
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
        status=SubscriptionStatus.ACTIVE.value,
        plan_name="monthly",
        start_date=LOCAL_PERIOD_1_START,
        end_date=LOCAL_PERIOD_1_END,
    )
    db_session.add(row)
    await db_session.commit()
    await db_session.refresh(row)
    return row
