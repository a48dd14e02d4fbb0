"""create fibre, blend, order and production tables

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f1a9c2e7b10"
down_revision = None
branch_labels = None
depends_on = None


ROLE_VALUES = ("admin", "production_manager", "store_keeper", "viewer")
ORDER_STATUS_VALUES = ("pending", "in_progress", "completed")


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("role", sa.Enum(*ROLE_VALUES, name="roleenum"), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=True),
    )

    op.create_table(
        "buyers",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("contact_person", sa.String(length=120), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "fibre_categories",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "fibres",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("fibre_code", sa.String(length=60), nullable=False, unique=True),
        sa.Column("fibre_name", sa.String(length=255), nullable=False),
        sa.Column(
            "category_id",
            sa.CHAR(length=36),
            sa.ForeignKey("fibre_categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("stock_kg", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("closing_stock", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("inward_stock", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("outward_stock", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("consumed_stock", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "blends",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("blend_code", sa.String(length=60), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "blend_fibres",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("blend_id", sa.CHAR(length=36), sa.ForeignKey("blends.id", ondelete="CASCADE"), nullable=False),
        sa.Column("fibre_id", sa.CHAR(length=36), sa.ForeignKey("fibres.id"), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("blend_id", "fibre_id", name="uq_blend_fibre"),
        sa.CheckConstraint("percentage >= 0 AND percentage <= 100", name="ck_blend_fibre_percentage_range"),
    )

    op.create_table(
        "raw_cotton_lots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("blend_id", sa.CHAR(length=36), sa.ForeignKey("blends.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lot_number", sa.String(length=80), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("grade", sa.String(length=60), nullable=True),
        sa.Column("source", sa.String(length=120), nullable=True),
        sa.Column("stock_kg", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("blend_id", "lot_number", name="uq_raw_cotton_lot_blend_lot"),
        sa.CheckConstraint("percentage >= 0 AND percentage <= 100", name="ck_raw_cotton_lot_percentage_range"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.CHAR(length=36), primary_key=True),
        sa.Column("order_number", sa.String(length=40), nullable=False, unique=True),
        sa.Column("buyer_id", sa.CHAR(length=36), sa.ForeignKey("buyers.id"), nullable=False),
        sa.Column("blend_id", sa.CHAR(length=36), sa.ForeignKey("blends.id"), nullable=False),
        sa.Column("quantity_kg", sa.Numeric(14, 3), nullable=False),
        sa.Column("realisation", sa.Numeric(6, 2), nullable=True),
        sa.Column("count", sa.Integer(), nullable=True),
        sa.Column("status", sa.Enum(*ORDER_STATUS_VALUES, name="orderstatus"), nullable=False),
        sa.Column("delivery_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity_kg > 0", name="ck_order_quantity_positive"),
    )
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "fibre_usage_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("fibre_id", sa.CHAR(length=36), sa.ForeignKey("fibres.id"), nullable=False),
        sa.Column("order_id", sa.CHAR(length=36), sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("used_kg", sa.Numeric(14, 3), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_fibre_usage_logs_fibre_id", "fibre_usage_logs", ["fibre_id"])
    op.create_index("ix_fibre_usage_logs_order_id", "fibre_usage_logs", ["order_id"])
    op.create_index("ix_fibre_usage_logs_timestamp", "fibre_usage_logs", ["timestamp"])

    op.create_table(
        "production_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.CHAR(length=36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("machine", sa.String(length=120), nullable=True),
        sa.Column("section", sa.String(length=60), nullable=True),
        sa.Column("shift", sa.String(length=20), nullable=True),
        sa.Column("production_kg", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("required_qty", sa.Numeric(14, 3), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("production_kg >= 0", name="ck_production_log_kg_non_negative"),
    )
    op.create_index("ix_production_logs_order_id", "production_logs", ["order_id"])
    op.create_index("ix_production_logs_date", "production_logs", ["date"])


def downgrade():
    op.drop_index("ix_production_logs_date", table_name="production_logs")
    op.drop_index("ix_production_logs_order_id", table_name="production_logs")
    op.drop_table("production_logs")
    op.drop_index("ix_fibre_usage_logs_timestamp", table_name="fibre_usage_logs")
    op.drop_index("ix_fibre_usage_logs_order_id", table_name="fibre_usage_logs")
    op.drop_index("ix_fibre_usage_logs_fibre_id", table_name="fibre_usage_logs")
    op.drop_table("fibre_usage_logs")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_table("orders")
    op.drop_table("raw_cotton_lots")
    op.drop_table("blend_fibres")
    op.drop_table("blends")
    op.drop_table("fibres")
    op.drop_table("fibre_categories")
    op.drop_table("buyers")
    op.drop_table("user")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        sa.Enum(name="orderstatus").drop(bind, checkfirst=True)
        sa.Enum(name="roleenum").drop(bind, checkfirst=True)
