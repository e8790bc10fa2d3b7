from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql


revision = "0001_invoicing_schema"
down_revision = None
branch_labels = None
depends_on = None


def _json_type(bind):
    if bind.dialect.name == "sqlite":
        return sa.JSON()
    return postgresql.JSONB(astext_type=sa.Text())


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    tables = set(inspect(bind).get_table_names())

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("first_name", sa.String(length=100), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("password_hash", sa.String(), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("business_info", _json_type(bind), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if "customers" not in tables:
        op.create_table(
            "customers",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("owner_id", sa.String(length=32), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=30), nullable=False),
            sa.Column("address", sa.String(length=255), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("owner_id", "email", name="uq_customers_owner_email"),
        )
        op.create_index("ix_customers_owner_id", "customers", ["owner_id"], unique=False)

    if "products" not in tables:
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("owner_id", sa.String(length=32), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("price", sa.Numeric(18, 4), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("category", sa.String(length=40), nullable=False),
            sa.Column("image_url", sa.String(length=500), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        )
        op.create_index("ix_products_owner_id", "products", ["owner_id"], unique=False)

    if "invoices" not in tables:
        op.create_table(
            "invoices",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("owner_id", sa.String(length=32), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("invoice_number", sa.Integer(), nullable=False),
            sa.Column("customer_id", sa.String(length=32), sa.ForeignKey("customers.id"), nullable=False),
            sa.Column("subtotal", sa.Numeric(18, 4), nullable=False),
            sa.Column("tax_rate", sa.Numeric(7, 4), nullable=False),
            sa.Column("tax_amount", sa.Numeric(18, 4), nullable=False),
            sa.Column("total", sa.Numeric(18, 4), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("due_date", sa.Date(), nullable=False),
            sa.Column("inventory_status", sa.String(length=20), nullable=False, server_default="pending"),
            *_timestamps(),
        )
        op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
        op.create_index("ix_invoices_owner_id", "invoices", ["owner_id"], unique=False)
        op.create_index("ix_invoices_customer_id", "invoices", ["customer_id"], unique=False)
        op.create_index("ix_invoices_inventory_status", "invoices", ["inventory_status"], unique=False)

    if "invoice_lines" not in tables:
        op.create_table(
            "invoice_lines",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column(
                "invoice_id",
                sa.String(length=32),
                sa.ForeignKey("invoices.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("product_id", sa.String(length=32), nullable=False),
            sa.Column("product_name", sa.String(length=100), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(18, 4), nullable=False),
            sa.CheckConstraint("quantity >= 1", name="ck_invoice_lines_quantity_positive"),
        )
        op.create_index("ix_invoice_lines_invoice_id", "invoice_lines", ["invoice_id"], unique=False)
        op.create_index("ix_invoice_lines_product_id", "invoice_lines", ["product_id"], unique=False)

    if "stock_movements" not in tables:
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("owner_id", sa.String(length=32), nullable=False),
            sa.Column(
                "product_id",
                sa.String(length=32),
                sa.ForeignKey("products.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("invoice_id", sa.String(length=32), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(length=30), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_stock_movements_owner_id", "stock_movements", ["owner_id"], unique=False)
        op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"], unique=False)
        op.create_index("ix_stock_movements_invoice_id", "stock_movements", ["invoice_id"], unique=False)

    if "sequence_counters" not in tables:
        op.create_table(
            "sequence_counters",
            sa.Column("name", sa.String(length=50), primary_key=True),
            sa.Column("current_value", sa.Integer(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )


def downgrade() -> None:
    tables = set(inspect(op.get_bind()).get_table_names())
    for table_name in (
        "sequence_counters",
        "stock_movements",
        "invoice_lines",
        "invoices",
        "products",
        "customers",
        "users",
    ):
        if table_name in tables:
            op.drop_table(table_name)
