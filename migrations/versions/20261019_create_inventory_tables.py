"""Create item, checkout ledger and sequence counter tables.

Revision ID: 20261019_inventory_tables
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_inventory_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "item",
        sa.Column("id", sa.String(length=255), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("supplier", sa.String(), nullable=False, server_default=""),
        sa.Column("supplier_url", sa.String(), nullable=True),
        sa.Column("on_hand", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("retail_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("count_date", sa.String(), nullable=False, server_default=""),
        sa.Column("count_person", sa.String(), nullable=False, server_default=""),
        sa.Column("delivery_date", sa.String(), nullable=False, server_default=""),
        sa.Column("location", sa.JSON(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("on_hand IS NULL OR on_hand >= 0", name="ck_item_on_hand_non_negative"),
        sa.CheckConstraint("quantity IS NULL OR quantity >= 0", name="ck_item_quantity_non_negative"),
        sa.CheckConstraint(
            "retail_price IS NULL OR retail_price >= 0",
            name="ck_item_retail_price_non_negative",
        ),
    )

    op.create_table(
        "checkout_ledger_entry",
        sa.Column("user_id", sa.String(length=255), primary_key=True),
        sa.Column("item_id", sa.String(length=255), primary_key=True),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("qty > 0", name="ck_checkout_ledger_entry_qty_positive"),
    )
    op.create_index(
        "ix_checkout_ledger_entry_updated_at",
        "checkout_ledger_entry",
        ["updated_at"],
    )

    op.create_table(
        "sequence_counter",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
    )


def downgrade() -> None:
    op.drop_table("sequence_counter")
    op.drop_index("ix_checkout_ledger_entry_updated_at", table_name="checkout_ledger_entry")
    op.drop_table("checkout_ledger_entry")
    op.drop_table("item")
