"""create_orders_table

Revision ID: 8f42b6e0d1a7
Revises: 3c1e9d7a52b4
Create Date: 2026-10-18 09:20:03.557981

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '8f42b6e0d1a7'
down_revision: Union[str, None] = '3c1e9d7a52b4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("customer_info", sa.JSON(), nullable=False),
        sa.Column("shipping_address", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("delivery_notes", sa.String(), nullable=True),
        sa.Column("shipping_fee", sa.Float(), nullable=False, server_default="0"),
        sa.Column("delivery_company", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("delivery_status", sa.String(), nullable=True),
        sa.Column("delivery_tracking_number", sa.String(), nullable=True),
        sa.Column("tracking_number", sa.String(), nullable=True),
        sa.Column("delivery_response", sa.JSON(), nullable=True),
        sa.Column("delivery_assigned_at", sa.DateTime(), nullable=True),
        sa.Column("delivery_fee", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
        sa.ForeignKeyConstraint(["delivery_company"], ["delivery_companies.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_delivery_company", "orders", ["delivery_company"])
    op.create_index("ix_orders_delivery_status", "orders", ["delivery_status"])
    op.create_index("ix_orders_delivery_tracking_number", "orders", ["delivery_tracking_number"])
    op.create_index("ix_orders_delivery_assigned_at", "orders", ["delivery_assigned_at"])


def downgrade() -> None:
    op.drop_table("orders")
