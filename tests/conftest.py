"""
Pytest configuration and fixtures for ShipBridge tests.
"""
import itertools
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["API_TOKEN"] = "test-api-token"
os.environ["COURIER_BASE_URL"] = "https://courier.test"
os.environ["COURIER_USERNAME"] = "courier-user"
os.environ["COURIER_PASSWORD"] = "courier-pass"
os.environ["WAREHOUSE_BASE_URL"] = ""
os.environ["ENABLED_PROVIDERS"] = "1,2"

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from shipbridge.core.database import Base  # noqa: E402
from shipbridge.core.locks import OrderLockManager  # noqa: E402
from shipbridge.models import Order, OrderStatus  # noqa: E402
from shipbridge.modules.shipping.providers.base import PartyAddress  # noqa: E402
from shipbridge.services.courier_client import ProviderQuoteClient  # noqa: E402
from shipbridge.services.label_store import LabelStore  # noqa: E402
from shipbridge.services.order_lifecycle import OrderLifecycleController  # noqa: E402
from shipbridge.services.quote_aggregator import QuoteAggregator  # noqa: E402
from shipbridge.services.shipment_issuer import ShipmentIssuer  # noqa: E402

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

_external_ids = itertools.count(1000)


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def quote_response(total: float, base: Optional[float] = None, gst: float = 0, **extra) -> Dict[str, Any]:
    body = {"success": True, "totalPrice": total, "gst": gst, "ruralSurcharge": 0, "estimatedDays": 2}
    if base is not None:
        body["basePrice"] = base
    body.update(extra)
    return body


@pytest_asyncio.fixture
async def db_session():
    """In-memory SQLite session with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def mock_db() -> AsyncMock:
    """Create mock async database session."""
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    return db


@pytest.fixture
def courier() -> MagicMock:
    """Courier backend double; every call is an AsyncMock."""
    client = MagicMock()
    client.calculate = AsyncMock()
    client.send_parcel = AsyncMock(return_value={
        "success": True,
        "consignmentNumber": "CN123456",
        "trackingNumber": "TRK123456",
        "trackingUrl": "https://track.test/TRK123456",
        "labelUrl": "https://courier.test/labels/CN123456",
    })
    client.download_label = AsyncMock(return_value=b"%PDF-1.4 label")
    client.check_rural = AsyncMock(return_value=False)
    return client


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def controller(db_session, courier, clock) -> OrderLifecycleController:
    label_store = LabelStore(courier)
    return OrderLifecycleController(
        db=db_session,
        warehouse=None,
        aggregator=QuoteAggregator(ProviderQuoteClient(courier, timeout=5), courier, provider_ids=[1, 2]),
        issuer=ShipmentIssuer(courier, label_store),
        label_store=label_store,
        clock=clock,
        locks=OrderLockManager(),
    )


@pytest.fixture
def sender() -> PartyAddress:
    return PartyAddress(
        name="Main Warehouse",
        street="12 Dock Road",
        suburb="Onehunga",
        city="Auckland",
        postcode="1061",
        phone="09 555 0100",
    )


@pytest.fixture
def make_order(db_session):
    """Factory inserting an order with a complete address and one 2.5 kg item."""

    async def _make(**overrides) -> Order:
        values = dict(
            external_id=f"CC-{next(_external_ids)}",
            order_number="SO-1001",
            customer_name="Aroha Ngata",
            customer_email="aroha@example.test",
            customer_phone="021 555 0199",
            delivery_street="7 Kowhai Street",
            delivery_suburb="Mount Eden",
            delivery_city="Auckland",
            delivery_postcode="1024",
            delivery_country="NZ",
            items=[{"description": "Electronics Box", "weight": 2.5, "length": 30, "width": 20, "height": 15}],
            status=OrderStatus.READY_TO_QUOTE,
        )
        values.update(overrides)
        order = Order(**values)
        db_session.add(order)
        await db_session.commit()
        return order

    return _make
