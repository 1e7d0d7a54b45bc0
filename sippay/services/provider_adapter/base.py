"""Uniform payment provider contract the order service depends on."""

from abc import ABC, abstractmethod

from sippay.common.state_machine import OrderStatus
from sippay.services.provider_adapter.mapping import map_fulfillment_state, map_order_state
from sippay.services.provider_adapter.models import (
    Authorization,
    CaptureResult,
    FulfillmentIntent,
    LineItem,
    MerchantContext,
    MerchantOrder,
    RefundResult,
    StateLevel,
)


class OrderDesk(ABC):
    """Places and withdraws orders on a merchant's point-of-sale system."""

    name: str = "pos"

    async def create_merchant_order(
        self, line_items: list[LineItem], fulfillment: FulfillmentIntent, merchant: MerchantContext
    ) -> MerchantOrder:
        """Hand the order to the merchant's POS; providers without one return no id."""

        return MerchantOrder()

    async def cancel_merchant_order(self, provider_order_id: str, merchant: MerchantContext) -> None:
        """Withdraw the POS order, where the provider placed one."""

        return None


class PaymentProvider(OrderDesk):
    """One implementation per provider; all vendor branching lives behind it.

    Failures surface as `sippay.common.errors` types only: `DeclinedError` and
    `ProviderError` from `authorize`, `CaptureFailedError` from `capture`,
    `CancellationFailedError` from `cancel_or_refund`. "Already captured" and
    "already cancelled" are successes.
    """

    name: str = "provider"

    @abstractmethod
    async def authorize(
        self, amount: int, currency: str, source: str | None, merchant: MerchantContext
    ) -> Authorization:
        """Place a hold (or an inline charge, for providers that capture inline)."""

    @abstractmethod
    async def capture(self, provider_transaction_id: str) -> CaptureResult:
        """Turn an authorization into a completed charge."""

    @abstractmethod
    async def cancel_or_refund(self, provider_transaction_id: str) -> RefundResult:
        """Void an uncaptured authorization or refund a captured charge."""

    def map_provider_state(self, state: str | None, level: StateLevel = StateLevel.ORDER) -> OrderStatus:
        if level is StateLevel.FULFILLMENT:
            return map_fulfillment_state(state)
        return map_order_state(state)
