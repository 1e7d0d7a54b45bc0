"""initial orders schema

Revision ID: 0001_orders
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_orders"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("transactionId", sa.String(), nullable=False),
        sa.Column("orderId", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("paymentStatus", sa.String(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("merchantId", sa.String(), nullable=False),
        sa.Column("locationId", sa.String(), nullable=True),
        sa.Column("paymentMethod", sa.String(), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("customer", sa.JSON(), nullable=True),
        sa.Column("userId", sa.String(), nullable=True),
        sa.Column("shopName", sa.String(), nullable=True),
        sa.Column("pickupTime", sa.String(), nullable=True),
        sa.Column("receiptUrl", sa.String(), nullable=True),
        sa.Column("receiptNumber", sa.String(), nullable=True),
        sa.Column("lastError", sa.String(), nullable=True),
        sa.Column("createdAt", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updatedAt", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("capturedAt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelledAt", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("transactionId"),
    )
    op.create_index("ix_orders_orderId", "orders", ["orderId"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_merchantId", "orders", ["merchantId"])
    op.create_index("ix_orders_userId", "orders", ["userId"])

    op.create_table(
        "order_timeline",
        sa.Column("timeline_id", sa.String(), nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["orders.transactionId"]),
        sa.PrimaryKeyConstraint("timeline_id"),
    )
    op.create_index("ix_order_timeline_transaction_id", "order_timeline", ["transaction_id"])

    op.create_table(
        "merchant_tokens",
        sa.Column("merchantId", sa.String(), nullable=False),
        sa.Column("oauthToken", sa.String(), nullable=False),
        sa.Column("refreshToken", sa.String(), nullable=True),
        sa.Column("locationId", sa.String(), nullable=True),
        sa.Column("shopName", sa.String(), nullable=True),
        sa.Column("createdAt", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updatedAt", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("merchantId"),
    )

    op.create_table(
        "user_devices",
        sa.Column("userId", sa.String(), nullable=False),
        sa.Column("deviceId", sa.String(), nullable=False),
        sa.Column("createdAt", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("userId", "deviceId"),
    )


def downgrade() -> None:
    op.drop_table("user_devices")
    op.drop_table("merchant_tokens")
    op.drop_index("ix_order_timeline_transaction_id", table_name="order_timeline")
    op.drop_table("order_timeline")
    op.drop_index("ix_orders_userId", table_name="orders")
    op.drop_index("ix_orders_merchantId", table_name="orders")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_index("ix_orders_orderId", table_name="orders")
    op.drop_table("orders")
