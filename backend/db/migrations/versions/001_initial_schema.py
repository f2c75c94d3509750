"""
Initial schema - catalog context and pricing engine tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def upgrade() -> None:
    # 1. Products
    op.create_table(
        "products",
        _uuid_pk("product_id"),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100)),
        sa.Column("price_ht", sa.Float),
        sa.Column("price_ttc", sa.Float),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price_ht >= 0", name="ck_product_price_ht_positive"),
        sa.CheckConstraint("price_ttc >= 0", name="ck_product_price_ttc_positive"),
    )
    op.create_index("ix_products_category_active", "products", ["category", "is_active"])

    # 2. Suppliers
    op.create_table(
        "suppliers",
        _uuid_pk("supplier_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_supplier_status"),
    )

    # 3. Supplier products
    op.create_table(
        "supplier_products",
        _uuid_pk("id"),
        sa.Column("supplier_id", UUID(as_uuid=True), sa.ForeignKey("suppliers.supplier_id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("supplier_price", sa.Float, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("supplier_id", "product_id", name="uq_supplier_product"),
    )
    op.create_index("ix_supplier_products_product", "supplier_products", ["product_id"])

    # 4. Inventory levels
    op.create_table(
        "inventory_levels",
        _uuid_pk("id"),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("location", sa.String(100), nullable=False, server_default="main"),
        sa.Column("timestamp", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("quantity_on_hand", sa.Integer, nullable=False),
        sa.CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_qty_positive"),
    )
    op.create_index(
        "ix_inventory_product_location_time", "inventory_levels", ["product_id", "location", "timestamp"]
    )

    # 5. Transactions
    op.create_table(
        "transactions",
        _uuid_pk("transaction_id"),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("timestamp", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Float, nullable=False),
        sa.Column("transaction_type", sa.String(20), nullable=False, server_default="sale"),
        sa.Column("external_id", sa.String(255)),
        sa.CheckConstraint("quantity != 0", name="ck_transaction_quantity_nonzero"),
        sa.CheckConstraint(
            "transaction_type IN ('sale', 'return', 'void', 'adjustment')", name="ck_transaction_type"
        ),
    )
    op.create_index("ix_transactions_product_time", "transactions", ["product_id", "timestamp"])

    # 6. Pricing rulesets
    op.create_table(
        "pricing_rulesets",
        _uuid_pk("ruleset_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 7. Pricing rules
    op.create_table(
        "pricing_rules",
        _uuid_pk("rule_id"),
        sa.Column(
            "ruleset_id", UUID(as_uuid=True), sa.ForeignKey("pricing_rulesets.ruleset_id"), nullable=False
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("rule_type", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer, nullable=False, server_default="100"),
        sa.Column("params", sa.JSON, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "rule_type IN ('seasonality', 'low_stock', 'low_rotation', 'margin_guard')",
            name="ck_pricing_rule_type",
        ),
    )
    op.create_index("ix_pricing_rules_ruleset_priority", "pricing_rules", ["ruleset_id", "priority"])

    # 8. Pricing simulations
    op.create_table(
        "pricing_simulations",
        _uuid_pk("simulation_id"),
        sa.Column(
            "ruleset_id", UUID(as_uuid=True), sa.ForeignKey("pricing_rulesets.ruleset_id"), nullable=False
        ),
        sa.Column("category", sa.String(100)),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("product_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("affected_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("avg_change_pct", sa.Float),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("applied_by", sa.String(255)),
        sa.Column("applied_at", sa.DateTime),
        sa.CheckConstraint(
            "status IN ('completed', 'applied', 'rolled_back')", name="ck_pricing_simulation_status"
        ),
    )
    op.create_index("ix_pricing_simulations_ruleset", "pricing_simulations", ["ruleset_id"])
    op.create_index("ix_pricing_simulations_created", "pricing_simulations", ["created_at"])

    # 9. Pricing simulation items
    op.create_table(
        "pricing_simulation_items",
        _uuid_pk("item_id"),
        sa.Column(
            "simulation_id",
            UUID(as_uuid=True),
            sa.ForeignKey("pricing_simulations.simulation_id"),
            nullable=False,
        ),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("rule_id", UUID(as_uuid=True), sa.ForeignKey("pricing_rules.rule_id"), nullable=True),
        sa.Column("rule_type", sa.String(20)),
        sa.Column("old_price_ht", sa.Float, nullable=False),
        sa.Column("new_price_ht", sa.Float, nullable=False),
        sa.Column("price_change_percent", sa.Float),
        sa.Column("old_margin_percent", sa.Float),
        sa.Column("new_margin_percent", sa.Float),
        sa.Column("reason", sa.Text),
        sa.Column("blocked_by_guard", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_pricing_items_simulation", "pricing_simulation_items", ["simulation_id"])
    op.create_index("ix_pricing_items_rule", "pricing_simulation_items", ["rule_id"])

    # 10. Price changes log (append-only)
    op.create_table(
        "price_changes_log",
        _uuid_pk("log_id"),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column(
            "simulation_id",
            UUID(as_uuid=True),
            sa.ForeignKey("pricing_simulations.simulation_id"),
            nullable=True,
        ),
        sa.Column("rule_type", sa.String(20)),
        sa.Column("old_price_ht", sa.Float, nullable=False),
        sa.Column("new_price_ht", sa.Float, nullable=False),
        sa.Column("price_change_percent", sa.Float),
        sa.Column("old_margin_percent", sa.Float),
        sa.Column("new_margin_percent", sa.Float),
        sa.Column("reason", sa.Text),
        sa.Column("applied_by", sa.String(255)),
        sa.Column("applied_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("is_rollback", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "rollback_of", UUID(as_uuid=True), sa.ForeignKey("price_changes_log.log_id"), nullable=True
        ),
        sa.CheckConstraint(
            "(is_rollback AND rollback_of IS NOT NULL) OR (NOT is_rollback AND rollback_of IS NULL)",
            name="ck_price_change_rollback_link",
        ),
    )
    op.create_index("ix_price_changes_simulation", "price_changes_log", ["simulation_id", "is_rollback"])
    op.create_index("ix_price_changes_product_time", "price_changes_log", ["product_id", "applied_at"])


def downgrade() -> None:
    for table in (
        "price_changes_log",
        "pricing_simulation_items",
        "pricing_simulations",
        "pricing_rules",
        "pricing_rulesets",
        "transactions",
        "inventory_levels",
        "supplier_products",
        "suppliers",
        "products",
    ):
        op.drop_table(table)
