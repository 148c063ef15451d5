"""create stock ledger tables

Revision ID: 20251018_0001
Revises:
Create Date: 2025-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20251018_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now())


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("category_id", sa.String(length=36), nullable=True),
            sa.Column("sku", sa.String(length=100), nullable=True),
            sa.Column("price", sa.Numeric(14, 2), nullable=False),
            sa.Column("cost_per_unit", sa.Numeric(14, 2), nullable=False),
            sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("last_stock_update", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            sa.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_quantity_non_negative"),
            sa.CheckConstraint("cost_per_unit >= 0", name="ck_products_cost_per_unit_non_negative"),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sku"),
        )
        op.create_index("ix_products_category_id", "products", ["category_id"], unique=False)
        op.create_index("ix_products_status_name", "products", ["status", "name"], unique=False)

    if not _table_exists(inspector, "daily_stock_records"):
        op.create_table(
            "daily_stock_records",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("stock_date", sa.Date(), nullable=False),
            sa.Column("opening_stock", sa.Integer(), nullable=False),
            sa.Column("stock_inward", sa.Integer(), nullable=False),
            sa.Column("sold_quantity", sa.Integer(), nullable=False),
            sa.Column("closing_stock", sa.Integer(), nullable=False),
            sa.Column("cost_per_unit", sa.Numeric(14, 2), nullable=False),
            sa.Column("stock_value", sa.Numeric(14, 2), nullable=False),
            sa.Column("physical_stock", sa.Integer(), nullable=True),
            sa.Column("stock_variance", sa.Integer(), nullable=True),
            sa.Column("reconciliation_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("reconciled_by", sa.String(length=36), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            _created_at(),
            _updated_at(),
            sa.CheckConstraint("stock_inward >= 0", name="ck_daily_stock_records_inward_non_negative"),
            sa.CheckConstraint("sold_quantity >= 0", name="ck_daily_stock_records_sold_non_negative"),
            sa.CheckConstraint("cost_per_unit >= 0", name="ck_daily_stock_records_cost_non_negative"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("product_id", "stock_date", name="ux_daily_stock_records_product_date"),
        )
        op.create_index(
            "ix_daily_stock_records_date_product",
            "daily_stock_records",
            ["stock_date", "product_id"],
            unique=False,
        )
        op.create_index(
            "ix_daily_stock_records_reconciliation_date",
            "daily_stock_records",
            ["reconciliation_date"],
            unique=False,
        )

    if not _table_exists(inspector, "stock_inwards"):
        op.create_table(
            "stock_inwards",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            sa.Column("inward_date", sa.Date(), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("cost_per_unit", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_cost", sa.Numeric(14, 2), nullable=False),
            sa.Column("supplier_name", sa.String(length=200), nullable=True),
            sa.Column("invoice_number", sa.String(length=100), nullable=True),
            sa.Column("batch_number", sa.String(length=100), nullable=True),
            sa.Column("expiry_date", sa.Date(), nullable=True),
            sa.Column("notes", sa.String(length=500), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stock_inwards_product_id", "stock_inwards", ["product_id"], unique=False)
        op.create_index(
            "ix_stock_inwards_product_date", "stock_inwards", ["product_id", "inward_date"], unique=False
        )
        op.create_index("ix_stock_inwards_date", "stock_inwards", ["inward_date"], unique=False)

    if not _table_exists(inspector, "sales"):
        op.create_table(
            "sales",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("invoice_no", sa.String(length=50), nullable=False),
            sa.Column("sale_date", sa.Date(), nullable=False),
            sa.Column("biller_id", sa.String(length=36), nullable=False),
            sa.Column("customer_name", sa.String(length=100), nullable=True),
            sa.Column("customer_phone", sa.String(length=20), nullable=True),
            sa.Column("payment_method", sa.String(length=20), nullable=False),
            sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
            sa.Column("tax_amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("notes", sa.String(length=255), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("invoice_no"),
        )
        op.create_index("ix_sales_biller_id", "sales", ["biller_id"], unique=False)
        op.create_index("ix_sales_sale_date_created_at", "sales", ["sale_date", "created_at"], unique=False)

    if not _table_exists(inspector, "sale_items"):
        op.create_table(
            "sale_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("sale_id", sa.String(length=36), nullable=True),
            sa.Column("product_id", sa.String(length=36), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
            sa.Column("tax_amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("line_total", sa.Numeric(14, 2), nullable=False),
            sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"], unique=False)
        op.create_index("ix_sale_items_product_id", "sale_items", ["product_id"], unique=False)

    if not _table_exists(inspector, "stock_reconciliations"):
        op.create_table(
            "stock_reconciliations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("reconciliation_code", sa.String(length=32), nullable=False),
            sa.Column("reconciliation_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="in_progress"),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            sa.Column("total_products", sa.Integer(), nullable=False),
            sa.Column("products_reconciled", sa.Integer(), nullable=False),
            sa.Column("total_variance", sa.Integer(), nullable=False),
            sa.Column("variance_value", sa.Numeric(14, 2), nullable=False),
            sa.Column("notes", sa.String(length=1000), nullable=True),
            sa.Column("approved_by", sa.String(length=36), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            _created_at(),
            _updated_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("reconciliation_code"),
            sa.UniqueConstraint("reconciliation_date"),
        )
        op.create_index(
            "ix_stock_reconciliations_date_status",
            "stock_reconciliations",
            ["reconciliation_date", "status"],
            unique=False,
        )

    if not _table_exists(inspector, "reconciliation_items"):
        op.create_table(
            "reconciliation_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("reconciliation_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("system_stock", sa.Integer(), nullable=False),
            sa.Column("physical_stock", sa.Integer(), nullable=True),
            sa.Column("variance", sa.Integer(), nullable=True),
            sa.Column("variance_value", sa.Numeric(14, 2), nullable=True),
            sa.Column("cost_per_unit", sa.Numeric(14, 2), nullable=False),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("ledger_annotated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["reconciliation_id"], ["stock_reconciliations.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("reconciliation_id", "product_id", name="ux_reconciliation_items_run_product"),
        )
        op.create_index(
            "ix_reconciliation_items_reconciliation_id", "reconciliation_items", ["reconciliation_id"], unique=False
        )
        op.create_index("ix_reconciliation_items_product_id", "reconciliation_items", ["product_id"], unique=False)

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"], unique=False)
        op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"], unique=False)
        op.create_index("ix_audit_logs_action_created_at", "audit_logs", ["action", "created_at"], unique=False)
        op.create_index(
            "ix_audit_logs_actor_created_at", "audit_logs", ["actor_user_id", "created_at"], unique=False
        )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in (
        "audit_logs",
        "reconciliation_items",
        "stock_reconciliations",
        "sale_items",
        "sales",
        "stock_inwards",
        "daily_stock_records",
        "products",
        "categories",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
