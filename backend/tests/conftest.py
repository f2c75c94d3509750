"""
Test Configuration — Fixtures for async DB, test client, and catalog data.

Each test gets its own in-memory SQLite database. The engines under test
commit and roll back their own transactions, so there is no outer
SAVEPOINT wrapper: the database is simply thrown away afterwards.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401  (registers tables on Base.metadata)
from api.deps import get_current_user, get_db
from api.main import app
from core.config import get_settings
from db.session import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed evaluation instant: mid-March, outside the default seasonality months.
AS_OF = datetime(2026, 3, 15, 12, 0, 0)

PRODUCT_IDS = {
    "SKU-001": uuid.UUID("00000000-0000-0000-0000-000000000101"),
    "SKU-002": uuid.UUID("00000000-0000-0000-0000-000000000102"),
    "SKU-003": uuid.UUID("00000000-0000-0000-0000-000000000103"),
    "SKU-004": uuid.UUID("00000000-0000-0000-0000-000000000104"),
}


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_user():
    """Mock authenticated operator."""
    return {
        "sub": "auth0|pricing-operator",
        "email": "pricing@repricer.test",
    }


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


@pytest.fixture
def pricing_settings(monkeypatch):
    """Override pricing settings through the environment for one test."""

    def _apply(**overrides):
        for key, value in overrides.items():
            monkeypatch.setenv(key.upper(), str(value))
        get_settings.cache_clear()
        return get_settings()

    yield _apply
    get_settings.cache_clear()


@pytest.fixture
async def catalog(test_db):
    """
    Seed a small stationery catalog.

      SKU-001  Cahiers    10.00  cost 8.50  stock 50  last sale 90 days ago
      SKU-002  Stylos      2.00  cost 1.00  stock 3   sold yesterday
      SKU-003  Classeurs   5.00  no cost    no stock  never sold
      SKU-004  Stylos      4.00  inactive
    """
    from db.models import InventoryLevel, Product, Supplier, SupplierProduct, Transaction

    products = [
        Product(product_id=PRODUCT_IDS["SKU-001"], sku="SKU-001", name="Cahier A4 96p", category="Cahiers",
                price_ht=10.0, price_ttc=12.0),
        Product(product_id=PRODUCT_IDS["SKU-002"], sku="SKU-002", name="Stylo bille bleu", category="Stylos",
                price_ht=2.0, price_ttc=2.4),
        Product(product_id=PRODUCT_IDS["SKU-003"], sku="SKU-003", name="Classeur A4", category="Classeurs",
                price_ht=5.0, price_ttc=6.0),
        Product(product_id=PRODUCT_IDS["SKU-004"], sku="SKU-004", name="Stylo plume", category="Stylos",
                price_ht=4.0, price_ttc=4.8, is_active=False),
    ]
    test_db.add_all(products)

    wholesaler = Supplier(name="Papeterie Grossiste", contact_email="orders@grossiste.test")
    discounter = Supplier(name="Bureau Discount", contact_email="sales@discount.test")
    test_db.add_all([wholesaler, discounter])
    await test_db.flush()

    test_db.add_all(
        [
            SupplierProduct(supplier_id=wholesaler.supplier_id, product_id=PRODUCT_IDS["SKU-001"], supplier_price=9.0),
            SupplierProduct(supplier_id=discounter.supplier_id, product_id=PRODUCT_IDS["SKU-001"], supplier_price=8.5),
            SupplierProduct(supplier_id=wholesaler.supplier_id, product_id=PRODUCT_IDS["SKU-002"], supplier_price=1.0),
            # Placeholder price, carries no cost information
            SupplierProduct(supplier_id=discounter.supplier_id, product_id=PRODUCT_IDS["SKU-002"], supplier_price=0.0),
        ]
    )

    test_db.add_all(
        [
            InventoryLevel(product_id=PRODUCT_IDS["SKU-001"], location="main",
                           timestamp=AS_OF - timedelta(days=1), quantity_on_hand=50),
            # SKU-002: latest main snapshot (2) + latest backroom snapshot (1)
            InventoryLevel(product_id=PRODUCT_IDS["SKU-002"], location="main",
                           timestamp=AS_OF - timedelta(days=5), quantity_on_hand=10),
            InventoryLevel(product_id=PRODUCT_IDS["SKU-002"], location="main",
                           timestamp=AS_OF - timedelta(days=1), quantity_on_hand=2),
            InventoryLevel(product_id=PRODUCT_IDS["SKU-002"], location="backroom",
                           timestamp=AS_OF - timedelta(days=2), quantity_on_hand=1),
            InventoryLevel(product_id=PRODUCT_IDS["SKU-004"], location="main",
                           timestamp=AS_OF - timedelta(days=1), quantity_on_hand=1),
        ]
    )

    test_db.add_all(
        [
            Transaction(product_id=PRODUCT_IDS["SKU-001"], timestamp=AS_OF - timedelta(days=90),
                        quantity=1, unit_price=10.0, transaction_type="sale"),
            # Returns are not sales and must not reset rotation
            Transaction(product_id=PRODUCT_IDS["SKU-001"], timestamp=AS_OF - timedelta(days=1),
                        quantity=-1, unit_price=10.0, transaction_type="return"),
            Transaction(product_id=PRODUCT_IDS["SKU-002"], timestamp=AS_OF - timedelta(days=1),
                        quantity=3, unit_price=2.0, transaction_type="sale"),
        ]
    )
    await test_db.commit()

    return {"product_ids": dict(PRODUCT_IDS), "as_of": AS_OF}


@pytest.fixture
def make_ruleset(test_db):
    """Factory: persist a ruleset from (rule_type, params, priority) tuples."""
    from db.models import PricingRule, PricingRuleset

    async def _make(rules, name="Test ruleset", is_active=True, inactive_rules=()):
        ruleset = PricingRuleset(name=name, is_active=is_active, created_by="fixture")
        test_db.add(ruleset)
        await test_db.flush()
        for index, (rule_type, params, priority) in enumerate(rules):
            test_db.add(
                PricingRule(
                    ruleset_id=ruleset.ruleset_id,
                    name=f"{rule_type} #{index}",
                    rule_type=rule_type,
                    priority=priority,
                    params=params,
                    is_active=index not in inactive_rules,
                )
            )
        await test_db.commit()
        return ruleset.ruleset_id

    return _make


@pytest.fixture
async def standard_ruleset(make_ruleset):
    """low_stock, then low_rotation, under a 20% margin guard."""
    return await make_ruleset(
        [
            ("low_stock", {"threshold": 5, "adjustment_percent": 10}, 10),
            ("low_rotation", {"days_without_sale": 60, "discount_percent": 15}, 20),
            ("margin_guard", {"min_margin_percent": 20}, 100),
        ],
        name="Standard",
    )
