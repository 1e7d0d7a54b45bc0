"""clover shops: order POS type and clover credentials

Revision ID: 0002_clover
Revises: 0001_orders
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_clover"
down_revision = "0001_orders"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("orders", sa.Column("posType", sa.String(), server_default="square", nullable=False))

    op.create_table(
        "clover_credentials",
        sa.Column("merchantId", sa.String(), nullable=False),
        sa.Column("accessToken", sa.String(), nullable=False),
        sa.Column("cloverMerchantId", sa.String(), nullable=True),
        sa.Column("shopName", sa.String(), nullable=True),
        sa.Column("createdAt", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updatedAt", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("merchantId"),
    )


def downgrade() -> None:
    op.drop_table("clover_credentials")
    op.drop_column("orders", "posType")
