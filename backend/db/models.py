"""
Repricer Database Models

Tables:
  Catalog & external context (read by the pricing engine):
  1. products           - Product catalog, live price_ht / price_ttc
  2. suppliers          - Product suppliers
  3. supplier_products  - Supplier unit prices (cost basis = lowest price)
  4. inventory_levels   - Per-location stock snapshots
  5. transactions       - Sales history (rotation signal)

  Pricing engine:
  6. pricing_rulesets          - Named collections of pricing rules
  7. pricing_rules             - Prioritized rules (seasonality, low_stock, low_rotation, margin_guard)
  8. pricing_simulations       - Dry-run evaluations (completed → applied → rolled_back)
  9. pricing_simulation_items  - One proposed price change per affected product
  10. price_changes_log        - Append-only ledger of committed and reverted prices
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

RULE_TYPES = ("seasonality", "low_stock", "low_rotation", "margin_guard")
SIMULATION_STATUSES = ("completed", "applied", "rolled_back")

# ─── 1. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100))
    price_ht = Column(Float)  # Price excluding tax, the repriced field
    price_ttc = Column(Float)  # Price including tax, derived from price_ht
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_products_category_active", "category", "is_active"),
        CheckConstraint("price_ht >= 0", name="ck_product_price_ht_positive"),
        CheckConstraint("price_ttc >= 0", name="ck_product_price_ttc_positive"),
    )

    supplier_offers = relationship("SupplierProduct", back_populates="product")


# ─── 2. Suppliers ───────────────────────────────────────────────────────────


class Supplier(Base):
    __tablename__ = "suppliers"

    supplier_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255))
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (CheckConstraint("status IN ('active', 'inactive')", name="ck_supplier_status"),)

    offers = relationship("SupplierProduct", back_populates="supplier")


# ─── 3. Supplier Products (cost basis) ──────────────────────────────────────


class SupplierProduct(Base):
    __tablename__ = "supplier_products"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    supplier_id = Column(GUID(), ForeignKey("suppliers.supplier_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    supplier_price = Column(Float, nullable=False)  # Unit cost, excluding tax
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("supplier_id", "product_id", name="uq_supplier_product"),
        Index("ix_supplier_products_product", "product_id"),
    )

    supplier = relationship("Supplier", back_populates="offers")
    product = relationship("Product", back_populates="supplier_offers")


# ─── 4. Inventory Levels ────────────────────────────────────────────────────


class InventoryLevel(Base):
    __tablename__ = "inventory_levels"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    location = Column(String(100), nullable=False, default="main")
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    quantity_on_hand = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_inventory_product_location_time", "product_id", "location", "timestamp"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_qty_positive"),
    )


# ─── 5. Transactions (sales history) ────────────────────────────────────────


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    transaction_type = Column(String(20), nullable=False, default="sale")
    external_id = Column(String(255))  # Order line ID

    __table_args__ = (
        Index("ix_transactions_product_time", "product_id", "timestamp"),
        CheckConstraint("quantity != 0", name="ck_transaction_quantity_nonzero"),
        CheckConstraint("transaction_type IN ('sale', 'return', 'void', 'adjustment')", name="ck_transaction_type"),
    )


# ─── 6. Pricing Rulesets ────────────────────────────────────────────────────


class PricingRuleset(Base):
    __tablename__ = "pricing_rulesets"

    ruleset_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    rules = relationship(
        "PricingRule",
        back_populates="ruleset",
        cascade="all, delete-orphan",
        order_by="PricingRule.priority",
    )


# ─── 7. Pricing Rules ───────────────────────────────────────────────────────


class PricingRule(Base):
    __tablename__ = "pricing_rules"

    rule_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    ruleset_id = Column(GUID(), ForeignKey("pricing_rulesets.ruleset_id"), nullable=False)
    name = Column(String(255), nullable=False)
    rule_type = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=100)  # Ascending = higher precedence
    params = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_pricing_rules_ruleset_priority", "ruleset_id", "priority"),
        CheckConstraint(
            "rule_type IN ('seasonality', 'low_stock', 'low_rotation', 'margin_guard')",
            name="ck_pricing_rule_type",
        ),
    )

    ruleset = relationship("PricingRuleset", back_populates="rules")


# ─── 8. Pricing Simulations ─────────────────────────────────────────────────


class PricingSimulation(Base):
    """
    One evaluation run of a ruleset over the catalog.

    Immutable except for the one-way status transitions
    completed → applied → rolled_back and the applied_by/applied_at stamp.
    """

    __tablename__ = "pricing_simulations"

    simulation_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    ruleset_id = Column(GUID(), ForeignKey("pricing_rulesets.ruleset_id"), nullable=False)
    category = Column(String(100))  # Optional population filter
    status = Column(String(20), nullable=False, default="completed")
    product_count = Column(Integer, nullable=False, default=0)
    affected_count = Column(Integer, nullable=False, default=0)
    avg_change_pct = Column(Float)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    applied_by = Column(String(255))
    applied_at = Column(DateTime)

    __table_args__ = (
        Index("ix_pricing_simulations_ruleset", "ruleset_id"),
        Index("ix_pricing_simulations_created", "created_at"),
        CheckConstraint(
            "status IN ('completed', 'applied', 'rolled_back')",
            name="ck_pricing_simulation_status",
        ),
    )

    items = relationship("PricingSimulationItem", back_populates="simulation")


# ─── 9. Pricing Simulation Items ────────────────────────────────────────────


class PricingSimulationItem(Base):
    __tablename__ = "pricing_simulation_items"

    item_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    simulation_id = Column(GUID(), ForeignKey("pricing_simulations.simulation_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    rule_id = Column(GUID(), ForeignKey("pricing_rules.rule_id"), nullable=True)
    rule_type = Column(String(20))
    old_price_ht = Column(Float, nullable=False)
    new_price_ht = Column(Float, nullable=False)
    price_change_percent = Column(Float)
    old_margin_percent = Column(Float)  # Null when the cost basis is unknown
    new_margin_percent = Column(Float)
    reason = Column(Text)
    blocked_by_guard = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_pricing_items_simulation", "simulation_id"),
        Index("ix_pricing_items_rule", "rule_id"),
    )

    simulation = relationship("PricingSimulation", back_populates="items")


# ─── 10. Price Changes Log ──────────────────────────────────────────────────


class PriceChangeLog(Base):
    """
    Append-only ledger. Rows are never updated or deleted; a rollback
    appends a mirror row pointing at the original through rollback_of.
    """

    __tablename__ = "price_changes_log"

    log_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    simulation_id = Column(GUID(), ForeignKey("pricing_simulations.simulation_id"), nullable=True)
    rule_type = Column(String(20))
    old_price_ht = Column(Float, nullable=False)
    new_price_ht = Column(Float, nullable=False)
    price_change_percent = Column(Float)
    old_margin_percent = Column(Float)
    new_margin_percent = Column(Float)
    reason = Column(Text)
    applied_by = Column(String(255))
    applied_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    is_rollback = Column(Boolean, nullable=False, default=False)
    rollback_of = Column(GUID(), ForeignKey("price_changes_log.log_id"), nullable=True)

    __table_args__ = (
        Index("ix_price_changes_simulation", "simulation_id", "is_rollback"),
        Index("ix_price_changes_product_time", "product_id", "applied_at"),
        CheckConstraint(
            "(is_rollback AND rollback_of IS NOT NULL) OR (NOT is_rollback AND rollback_of IS NULL)",
            name="ck_price_change_rollback_link",
        ),
    )
