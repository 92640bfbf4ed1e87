"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete store schema:
- units, products, product_variants: catalog with unit conversion
- stock_mutations: append-only stock ledger (signed base-unit quantities)
- customers, customer_balance_mutations: credit balance with audit trail
- suppliers, purchase_orders, purchase_items, supplier_returns: inbound goods
- sales, sale_items: invoices with frozen price/factor/cost snapshots
- debts, debt_payments: receivables per sale
- customer_returns, customer_return_items, customer_exchange_items
- document_sequences: INV/RET/PO numbering
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")
    )


def _updated_at():
    return sa.Column(
        "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")
    )


def upgrade():
    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=50), nullable=False),
        _created_at(),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("base_unit_id", sa.Integer(), nullable=False),
        sa.Column("stock", sa.Numeric(14, 3), nullable=False),
        sa.Column("min_stock", sa.Numeric(14, 3), nullable=False),
        sa.Column("average_cost", sa.Numeric(14, 4), nullable=False),
        sa.Column("last_purchase_cost", sa.Numeric(14, 4), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["base_unit_id"], ["units.id"]),
        sa.UniqueConstraint("sku"),
        sa.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index("ix_products_base_unit_id", "products", ["base_unit_id"])

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("sku", sa.String(length=60), nullable=False),
        sa.Column("conversion_to_base", sa.Numeric(14, 4), nullable=False),
        sa.Column("sell_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.UniqueConstraint("sku"),
        sa.CheckConstraint("conversion_to_base > 0", name="ck_variants_conversion_positive"),
        sa.CheckConstraint("sell_price >= 0", name="ck_variants_price_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"])

    # ============================================================================
    # Parties
    # ============================================================================
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("credit_balance", sa.Numeric(14, 2), nullable=False),
        _created_at(),
        _updated_at(),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("credit_balance >= 0", name="ck_customers_balance_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customers_name", "customers", ["name"])

    op.create_table(
        "customer_balance_mutations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_before", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(14, 2), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customer_balance_mutations_customer_id", "customer_balance_mutations", ["customer_id"])
    op.create_index(
        "ix_balance_mutations_customer_created", "customer_balance_mutations", ["customer_id", "created_at"]
    )

    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        _created_at(),
        sqlite_autoincrement=True,
    )

    # ============================================================================
    # Stock ledger
    # ============================================================================
    op.create_table(
        "stock_mutations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("qty_base_unit", sa.Numeric(14, 4), nullable=False),
        sa.Column("unit_factor_at_mutation", sa.Numeric(14, 4), nullable=True),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_mutations_product_id", "stock_mutations", ["product_id"])
    op.create_index("ix_stock_mutations_variant_id", "stock_mutations", ["variant_id"])
    op.create_index("ix_stock_mutations_type", "stock_mutations", ["type"])
    op.create_index("ix_stock_mutations_user_id", "stock_mutations", ["user_id"])
    op.create_index("ix_stock_mutations_product_created", "stock_mutations", ["product_id", "created_at"])
    op.create_index("ix_stock_mutations_reference", "stock_mutations", ["reference"])

    op.create_table(
        "supplier_returns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("qty", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_factor_at_return", sa.Numeric(14, 4), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_supplier_returns_supplier_id", "supplier_returns", ["supplier_id"])
    op.create_index("ix_supplier_returns_product_id", "supplier_returns", ["product_id"])

    # ============================================================================
    # Purchases
    # ============================================================================
    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total", sa.Numeric(14, 2), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.UniqueConstraint("order_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_purchase_orders_supplier_id", "purchase_orders", ["supplier_id"])
    op.create_index("ix_purchase_orders_status", "purchase_orders", ["status"])

    op.create_table(
        "purchase_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("qty", sa.Numeric(14, 3), nullable=False),
        sa.Column("price", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_factor_at_purchase", sa.Numeric(14, 4), nullable=False),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.Column("cost_before", sa.Numeric(14, 4), nullable=False),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_purchase_items_purchase_id", "purchase_items", ["purchase_id"])

    # ============================================================================
    # Sales and debts
    # ============================================================================
    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_paid", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_return", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_balance_used", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.UniqueConstraint("invoice_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_created_status", "sales", ["created_at", "status"])
    op.create_index("ix_sales_customer", "sales", ["customer_id"])
    op.create_index("ix_sales_status", "sales", ["status"])
    op.create_index("ix_sales_user_id", "sales", ["user_id"])

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("qty", sa.Numeric(14, 3), nullable=False),
        sa.Column("price_at_sale", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_factor_at_sale", sa.Numeric(14, 4), nullable=False),
        sa.Column("cost_at_sale", sa.Numeric(14, 4), nullable=False),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"])
    op.create_index("ix_sale_items_product_id", "sale_items", ["product_id"])

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("original_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("remaining_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        _updated_at(),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.UniqueConstraint("sale_id"),
        sa.CheckConstraint("remaining_amount >= 0", name="ck_debts_remaining_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_debts_status", "debts", ["status"])
    op.create_index("ix_debts_customer_active_created", "debts", ["customer_id", "is_active", "created_at"])

    op.create_table(
        "debt_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("debt_id", sa.Integer(), nullable=False),
        sa.Column("amount_paid", sa.Numeric(14, 2), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("source_sale_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["debt_id"], ["debts.id"]),
        sa.ForeignKeyConstraint(["source_sale_id"], ["sales.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_debt_payments_debt_id", "debt_payments", ["debt_id"])

    # ============================================================================
    # Customer returns
    # ============================================================================
    op.create_table(
        "customer_returns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("return_number", sa.String(length=64), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("total_value_returned", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_value_exchange", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_refund", sa.Numeric(14, 2), nullable=False),
        sa.Column("compensation_type", sa.String(length=16), nullable=False),
        sa.Column("surplus_strategy", sa.String(length=16), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.UniqueConstraint("return_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customer_returns_sale", "customer_returns", ["sale_id"])
    op.create_index("ix_customer_returns_created", "customer_returns", ["created_at"])
    op.create_index("ix_customer_returns_status", "customer_returns", ["status"])

    op.create_table(
        "customer_return_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("return_id", sa.Integer(), nullable=False),
        sa.Column("sale_item_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("qty", sa.Numeric(14, 3), nullable=False),
        sa.Column("price_at_return", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_factor_at_return", sa.Numeric(14, 4), nullable=False),
        sa.Column("returned_to_stock", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["return_id"], ["customer_returns.id"]),
        sa.ForeignKeyConstraint(["sale_item_id"], ["sale_items.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customer_return_items_return_id", "customer_return_items", ["return_id"])
    op.create_index("ix_customer_return_items_sale_item_id", "customer_return_items", ["sale_item_id"])

    op.create_table(
        "customer_exchange_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("return_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("qty", sa.Numeric(14, 3), nullable=False),
        sa.Column("price_at_exchange", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_factor_at_exchange", sa.Numeric(14, 4), nullable=False),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.ForeignKeyConstraint(["return_id"], ["customer_returns.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customer_exchange_items_return_id", "customer_exchange_items", ["return_id"])

    # ============================================================================
    # Document numbering
    # ============================================================================
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        _updated_at(),
        sa.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        sqlite_autoincrement=True,
    )


def downgrade():
    for table in (
        "document_sequences",
        "customer_exchange_items",
        "customer_return_items",
        "customer_returns",
        "debt_payments",
        "debts",
        "sale_items",
        "sales",
        "purchase_items",
        "purchase_orders",
        "supplier_returns",
        "stock_mutations",
        "suppliers",
        "customer_balance_mutations",
        "customers",
        "product_variants",
        "products",
        "units",
    ):
        op.drop_table(table)
