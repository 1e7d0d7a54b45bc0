"""Adapter for orders paid outside the app (at the counter, through the POS)."""

from uuid import uuid4

from sippay.services.provider_adapter.base import OrderDesk, PaymentProvider
from sippay.services.provider_adapter.models import (
    Authorization,
    CaptureResult,
    FulfillmentIntent,
    LineItem,
    MerchantContext,
    MerchantOrder,
    RefundResult,
)


class ExternalPaymentAdapter(PaymentProvider):
    """Moves no money: the order is placed on the POS and settled there."""

    name = "external"

    def __init__(self, order_desk: OrderDesk | None = None) -> None:
        self.order_desk = order_desk

    async def authorize(
        self, amount: int, currency: str, source: str | None, merchant: MerchantContext
    ) -> Authorization:
        return Authorization(
            provider_transaction_id=f"ext_{uuid4().hex}",
            captured=True,
            amount=amount,
            currency=currency,
            raw={"external": True},
        )

    async def create_merchant_order(
        self, line_items: list[LineItem], fulfillment: FulfillmentIntent, merchant: MerchantContext
    ) -> MerchantOrder:
        if self.order_desk is None:
            return MerchantOrder()
        return await self.order_desk.create_merchant_order(line_items, fulfillment, merchant)

    async def cancel_merchant_order(self, provider_order_id: str, merchant: MerchantContext) -> None:
        if self.order_desk is not None:
            await self.order_desk.cancel_merchant_order(provider_order_id, merchant)

    async def capture(self, provider_transaction_id: str) -> CaptureResult:
        return CaptureResult(already_captured=True)

    async def cancel_or_refund(self, provider_transaction_id: str) -> RefundResult:
        return RefundResult(already_cancelled=True)
