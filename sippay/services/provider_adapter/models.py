"""Typed shapes exchanged across the payment provider boundary.

Vendor payloads never leave an adapter; everything the order service sees is
one of these models.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from sippay.common.state_machine import OrderStatus


class PaymentMethod(str, Enum):
    CARD = "card"
    APPLE_PAY = "apple_pay"
    EXTERNAL = "external"


class PosType(str, Enum):
    """Point-of-sale system a coffee shop takes its orders on."""

    SQUARE = "square"
    CLOVER = "clover"


class StateLevel(str, Enum):
    """Which vendor vocabulary a state string comes from."""

    ORDER = "order"
    FULFILLMENT = "fulfillment"


class LineItem(BaseModel):
    """One ordered drink/food item; `price` is the unit price in minor units."""

    id: str | None = None
    name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    price: int = Field(ge=0)
    customizations: str | None = None


class Customer(BaseModel):
    name: str | None = None
    email: str | None = None


class MerchantCredentials(BaseModel):
    """POS credentials for one coffee shop.

    Square shops are stored in `merchant_tokens`, Clover shops in
    `clover_credentials`; `pos_merchant_id` is the Clover-side merchant id.
    """

    merchant_id: str
    pos_type: PosType = PosType.SQUARE
    oauth_token: str | None = None
    location_id: str | None = None
    pos_merchant_id: str | None = None
    shop_name: str | None = None


class MerchantContext(BaseModel):
    """Per-request merchant data an adapter needs to shape vendor requests."""

    merchant_id: str
    location_id: str | None = None
    customer: Customer | None = None
    reference: str | None = None


class FulfillmentIntent(BaseModel):
    """Pickup details attached to a merchant order."""

    recipient_name: str = "Customer"
    recipient_email: str | None = None
    pickup_at: str | None = None
    note: str = "Order placed via mobile app"
    external_tender_amount: int | None = None
    currency: str = "USD"


class Authorization(BaseModel):
    provider_transaction_id: str
    status: Literal["authorized"] = "authorized"
    # Some providers capture inline (or unexpectedly capture immediately).
    captured: bool = False
    amount: int
    currency: str
    receipt_url: str | None = None
    receipt_number: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class MerchantOrder(BaseModel):
    provider_order_id: str | None = None


class CaptureResult(BaseModel):
    captured_amount: int | None = None
    already_captured: bool = False
    status: OrderStatus = OrderStatus.SUBMITTED
    receipt_url: str | None = None


class RefundResult(BaseModel):
    refund_id: str | None = None
    already_cancelled: bool = False
