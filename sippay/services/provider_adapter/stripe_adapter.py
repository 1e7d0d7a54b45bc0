"""Stripe adapter for Apple Pay: manual-capture payment intents.

The Stripe SDK is synchronous, so each call runs in a worker thread. POS order
placement is delegated to an optional `order_desk` (the merchant's Square or Clover
adapter), because Stripe itself has no merchant order concept.
"""

import asyncio
from time import perf_counter
from typing import Any
from uuid import uuid4

import stripe

from sippay.common.config import settings
from sippay.common.errors import (
    CancellationFailedError,
    CaptureFailedError,
    DeclinedError,
    DeclineReason,
    ProviderError,
)
from sippay.common.logging import logger
from sippay.common.metrics import provider_latency_seconds
from sippay.common.state_machine import OrderStatus
from sippay.services.provider_adapter.base import OrderDesk, PaymentProvider
from sippay.services.provider_adapter.mapping import map_stripe_intent_state
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


CARD_ERROR_REASONS: dict[str, DeclineReason] = {
    "card_declined": DeclineReason.CARD_DECLINED,
    "insufficient_funds": DeclineReason.INSUFFICIENT_FUNDS,
    "incorrect_cvc": DeclineReason.CVV_FAILURE,
    "invalid_cvc": DeclineReason.CVV_FAILURE,
    "incorrect_zip": DeclineReason.ADDRESS_VERIFICATION_FAILURE,
}


def decline_reason(exc: "stripe.CardError") -> DeclineReason:
    """Prefer the issuer's decline code, fall back to Stripe's error code."""

    error = getattr(exc, "error", None)
    for code in (getattr(error, "decline_code", None), getattr(exc, "code", None)):
        if code in CARD_ERROR_REASONS:
            return CARD_ERROR_REASONS[code]
    return DeclineReason.CARD_DECLINED


class StripeAdapter(PaymentProvider):
    """Authorize-then-capture payments; the capture step is a separate call."""

    name = "stripe"

    def __init__(self, secret_key: str, order_desk: OrderDesk | None = None) -> None:
        self.secret_key = secret_key
        self.order_desk = order_desk

    async def _call(self, operation: str, fn, *args, **kwargs) -> Any:
        started = perf_counter()
        try:
            return await asyncio.to_thread(fn, *args, api_key=self.secret_key, **kwargs)
        finally:
            provider_latency_seconds.labels(
                service=settings.service_name, provider=self.name, operation=operation
            ).observe(max(0.0, perf_counter() - started))

    async def authorize(
        self, amount: int, currency: str, source: str | None, merchant: MerchantContext
    ) -> Authorization:
        if not source:
            raise DeclinedError(DeclineReason.GENERIC_DECLINE, "missing payment token")
        try:
            intent = await self._call(
                "create_payment_intent",
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency.lower(),
                payment_method_types=["card"],
                payment_method_data={"type": "card", "card": {"token": source}},
                capture_method="manual",
                confirm=True,
                metadata={"merchantId": merchant.merchant_id, "reference": merchant.reference or ""},
                idempotency_key=str(uuid4()),
            )
        except stripe.CardError as exc:
            raise DeclinedError(decline_reason(exc), str(exc)) from exc
        except stripe.StripeError as exc:
            raise ProviderError(f"stripe create_payment_intent failed: {exc}") from exc

        if intent.status not in ("requires_capture", "succeeded"):
            logger.warning("stripe_intent_not_authorized intent_id=%s status=%s", intent.id, intent.status)
            raise DeclinedError(DeclineReason.GENERIC_DECLINE, f"payment intent status {intent.status}")
        if intent.status == "succeeded":
            logger.error(
                "stripe_intent_captured_immediately intent_id=%s amount=%s", intent.id, intent.amount
            )
        return Authorization(
            provider_transaction_id=intent.id,
            captured=intent.status == "succeeded",
            amount=intent.amount,
            currency=(intent.currency or currency).upper(),
            raw={"status": intent.status},
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
        try:
            intent = await self._call(
                "capture_payment_intent",
                stripe.PaymentIntent.capture,
                provider_transaction_id,
                expand=["latest_charge"],
            )
            return CaptureResult(captured_amount=intent.amount_received, receipt_url=_receipt_url(intent))
        except stripe.InvalidRequestError as exc:
            try:
                intent = await self._call(
                    "retrieve_payment_intent",
                    stripe.PaymentIntent.retrieve,
                    provider_transaction_id,
                    expand=["latest_charge"],
                )
            except stripe.StripeError:
                raise CaptureFailedError(str(exc)) from exc
            if intent.status != "succeeded":
                raise CaptureFailedError(f"unexpected payment intent status {intent.status}") from exc
            return CaptureResult(
                captured_amount=intent.amount_received,
                already_captured=True,
                receipt_url=_receipt_url(intent),
            )
        except stripe.StripeError as exc:
            raise CaptureFailedError(str(exc)) from exc

    async def cancel_or_refund(self, provider_transaction_id: str) -> RefundResult:
        try:
            intent = await self._call(
                "retrieve_payment_intent", stripe.PaymentIntent.retrieve, provider_transaction_id
            )
            if intent.status == "canceled":
                return RefundResult(already_cancelled=True)
            if intent.status == "succeeded":
                return await self._refund(provider_transaction_id)
            await self._call("cancel_payment_intent", stripe.PaymentIntent.cancel, provider_transaction_id)
            return RefundResult()
        except stripe.StripeError as exc:
            raise CancellationFailedError(str(exc)) from exc

    async def _refund(self, provider_transaction_id: str) -> RefundResult:
        try:
            refund = await self._call(
                "create_refund",
                stripe.Refund.create,
                payment_intent=provider_transaction_id,
                idempotency_key=f"refund-{provider_transaction_id}",
            )
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "charge_already_refunded":
                return RefundResult(already_cancelled=True)
            raise
        return RefundResult(refund_id=refund.id)

    def map_provider_state(self, state: str | None, level: StateLevel = StateLevel.ORDER) -> OrderStatus:
        return map_stripe_intent_state(state)


def _receipt_url(intent) -> str | None:
    charge = getattr(intent, "latest_charge", None)
    return getattr(charge, "receipt_url", None) if charge is not None and not isinstance(charge, str) else None
