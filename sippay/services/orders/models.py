"""Order service database models.

`orders` is the single source of truth for order status. Column names keep the
document field names older clients and records were written with.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from sippay.common.db import Base
from sippay.common.state_machine import OrderStatus


class Order(Base):
    """Current state of one customer order, keyed by the provider payment id."""

    __tablename__ = "orders"

    transaction_id: Mapped[str] = mapped_column("transactionId", String, primary_key=True)
    order_id: Mapped[str | None] = mapped_column("orderId", String, nullable=True, index=True)
    status: Mapped[str] = mapped_column(String, index=True)
    payment_status: Mapped[str | None] = mapped_column("paymentStatus", String, nullable=True)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    merchant_id: Mapped[str] = mapped_column("merchantId", String, index=True)
    location_id: Mapped[str | None] = mapped_column("locationId", String, nullable=True)
    payment_method: Mapped[str] = mapped_column("paymentMethod", String)
    pos_type: Mapped[str] = mapped_column("posType", String, default="square", server_default="square")
    items: Mapped[list] = mapped_column(JSON, default=list)
    customer: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    user_id: Mapped[str | None] = mapped_column("userId", String, nullable=True, index=True)
    shop_name: Mapped[str | None] = mapped_column("shopName", String, nullable=True)
    pickup_time: Mapped[str | None] = mapped_column("pickupTime", String, nullable=True)
    receipt_url: Mapped[str | None] = mapped_column("receiptUrl", String, nullable=True)
    receipt_number: Mapped[str | None] = mapped_column("receiptNumber", String, nullable=True)
    last_error: Mapped[str | None] = mapped_column("lastError", String, nullable=True)
    created_at: Mapped[datetime] = mapped_column("createdAt", DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        "updatedAt", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    captured_at: Mapped[datetime | None] = mapped_column("capturedAt", DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column("cancelledAt", DateTime(timezone=True), nullable=True)

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus.parse(self.status)

    def to_document(self) -> dict:
        """Render with the stored document field names."""

        return {
            "transactionId": self.transaction_id,
            "orderId": self.order_id,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "amount": self.amount,
            "currency": self.currency,
            "merchantId": self.merchant_id,
            "paymentMethod": self.payment_method,
            "posType": self.pos_type,
            "items": self.items or [],
            "customer": self.customer,
            "userId": self.user_id,
            "shopName": self.shop_name,
            "pickupTime": self.pickup_time,
            "receiptUrl": self.receipt_url,
            "receiptNumber": self.receipt_number,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class OrderTimeline(Base):
    """Immutable audit trail of every accepted status transition."""

    __tablename__ = "order_timeline"

    timeline_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    transaction_id: Mapped[str] = mapped_column(ForeignKey("orders.transactionId"), index=True)
    from_status: Mapped[str | None] = mapped_column(String, nullable=True)
    to_status: Mapped[str] = mapped_column(String)
    source: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class MerchantToken(Base):
    """POS credentials for one coffee shop."""

    __tablename__ = "merchant_tokens"

    merchant_id: Mapped[str] = mapped_column("merchantId", String, primary_key=True)
    oauth_token: Mapped[str] = mapped_column("oauthToken", String)
    refresh_token: Mapped[str | None] = mapped_column("refreshToken", String, nullable=True)
    location_id: Mapped[str | None] = mapped_column("locationId", String, nullable=True)
    shop_name: Mapped[str | None] = mapped_column("shopName", String, nullable=True)
    created_at: Mapped[datetime] = mapped_column("createdAt", DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        "updatedAt", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_tokens(self) -> dict:
        return {
            "merchantId": self.merchant_id,
            "oauth_token": self.oauth_token,
            "refreshToken": self.refresh_token,
            "locationId": self.location_id,
            "shopName": self.shop_name,
        }


class CloverCredential(Base):
    """Clover API access for one coffee shop; `cloverMerchantId` is Clover's own id."""

    __tablename__ = "clover_credentials"

    merchant_id: Mapped[str] = mapped_column("merchantId", String, primary_key=True)
    access_token: Mapped[str] = mapped_column("accessToken", String)
    clover_merchant_id: Mapped[str | None] = mapped_column("cloverMerchantId", String, nullable=True)
    shop_name: Mapped[str | None] = mapped_column("shopName", String, nullable=True)
    created_at: Mapped[datetime] = mapped_column("createdAt", DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        "updatedAt", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_credentials(self) -> dict:
        return {
            "accessToken": self.access_token,
            "merchantId": self.clover_merchant_id or self.merchant_id,
        }
