"""
Test Configuration — Fixtures for async DB, test client, and seed data.

Each test gets its own in-memory SQLite database, so application code is
free to commit and open SAVEPOINTs exactly as it does against PostgreSQL.
"""

import os
import tempfile
import uuid
from datetime import datetime, timedelta

# Must be set before core.config is first imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("UPLOAD_PATH", tempfile.mkdtemp(prefix="stocktruth-uploads-"))
os.environ.setdefault("SYSTEM_USERNAME", "agent-system")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from api.main import app
from db.session import Base, build_engine

TEST_DATABASE_URL = "sqlite+aiosqlite://"
SYSTEM_USERNAME = os.environ["SYSTEM_USERNAME"]


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = build_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session = AsyncSession(bind=test_engine, expire_on_commit=False)
    yield session
    await session.close()


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {"sub": "test-user-id", "email": "test@stocktruth.local"}


@pytest.fixture
async def client(test_db, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Seed data ──────────────────────────────────────────────────────────────


@pytest.fixture
async def ingestion(test_db):
    """An ingestion record to hang hand-built snapshot rows off."""
    from db.models import IngestionRecord

    record = IngestionRecord(
        filename="seed.csv",
        data_type="inventory_snapshot",
        source="test_seed",
        mapping_type="generic",
        status="COMPLETED",
    )
    test_db.add(record)
    await test_db.commit()
    return record


@pytest.fixture
async def seeded_db(test_db):
    """System user, an operator, one product stocked in one location, and two orders."""
    from db.models import InventoryRecord, Location, Order, Product, User

    system_user = User(
        username=SYSTEM_USERNAME,
        full_name="Agent Service Account",
        role="SYSTEM",
        is_service_account=True,
    )
    operator = User(username="jdoe", full_name="Jane Doe", email="jdoe@example.com", role="OPERATOR")
    product = Product(sku="SKU-0001", upc="012345678905", name="Widget, Blue", category="Hardware", unit_cost=4.25)
    location = Location(code="A-01-01", zone="A", location_type="PICK", min_quantity=5, max_quantity=100)
    test_db.add_all([system_user, operator, product, location])
    await test_db.flush()

    inventory = InventoryRecord(
        product_id=product.product_id,
        location_id=location.location_id,
        quantity_on_hand=10,
        quantity_allocated=2,
        quantity_available=8,
    )
    late_order = Order(
        order_number="SO-1001",
        customer_name="Acme Corp",
        status="PICKING",
        priority=5,
        required_date=datetime.utcnow() - timedelta(days=3),
    )
    future_order = Order(
        order_number="SO-1002",
        customer_name="Globex",
        status="PENDING",
        priority=7,
        required_date=datetime.utcnow() + timedelta(days=3),
    )
    test_db.add_all([inventory, late_order, future_order])
    await test_db.commit()

    return {
        "system_user": system_user,
        "operator": operator,
        "product": product,
        "location": location,
        "inventory": inventory,
        "late_order": late_order,
        "future_order": future_order,
    }


@pytest.fixture
def make_discrepancy(test_db):
    """Factory for OPEN discrepancies."""
    from db.models import Discrepancy

    async def _make(
        sku="SKU-0001",
        location_code="A-01-01",
        discrepancy_type="cycle_count_variance",
        severity="medium",
        variance=-12.0,
        detected_at=None,
        **extra,
    ):
        discrepancy = Discrepancy(
            discrepancy_id=uuid.uuid4(),
            discrepancy_type=discrepancy_type,
            severity=severity,
            sku=sku,
            location_code=location_code,
            variance=variance,
            description=f"{discrepancy_type} at {location_code}",
            detected_at=detected_at or datetime.utcnow(),
            **extra,
        )
        test_db.add(discrepancy)
        await test_db.commit()
        return discrepancy

    return _make
