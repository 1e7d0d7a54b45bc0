"""Square adapter: payments, POS orders and refunds over the Square REST API."""

from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import Any
from uuid import uuid4

import httpx

from sippay.common.config import settings
from sippay.common.errors import (
    CancellationFailedError,
    CaptureFailedError,
    DeclinedError,
    DeclineReason,
    NotFoundError,
    ProviderError,
)
from sippay.common.logging import logger
from sippay.common.metrics import provider_latency_seconds
from sippay.common.tracing import tracer
from sippay.services.provider_adapter.base import PaymentProvider
from sippay.services.provider_adapter.models import (
    Authorization,
    CaptureResult,
    FulfillmentIntent,
    LineItem,
    MerchantContext,
    MerchantOrder,
    RefundResult,
)


SQUARE_BASE_URLS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}

DECLINE_CODES: dict[str, DeclineReason] = {
    "CARD_DECLINED": DeclineReason.CARD_DECLINED,
    "INSUFFICIENT_FUNDS": DeclineReason.INSUFFICIENT_FUNDS,
    "CVV_FAILURE": DeclineReason.CVV_FAILURE,
    "ADDRESS_VERIFICATION_FAILURE": DeclineReason.ADDRESS_VERIFICATION_FAILURE,
    "GENERIC_DECLINE": DeclineReason.GENERIC_DECLINE,
}

DEFAULT_PICKUP_DELAY = timedelta(minutes=5)


class SquareApiError(ProviderError):
    """A 4xx response from Square, with its `errors` list kept for branching."""

    def __init__(self, status_code: int, errors: list[dict[str, Any]]) -> None:
        detail = "; ".join(e.get("detail") or e.get("code", "") for e in errors) or f"http {status_code}"
        super().__init__(detail)
        self.http_status = status_code
        self.errors = errors

    @property
    def first_code(self) -> str:
        return self.errors[0].get("code", "") if self.errors else ""

    @property
    def first_category(self) -> str:
        return self.errors[0].get("category", "") if self.errors else ""


class SquareAdapter(PaymentProvider):
    """Card payments through Square; captures inline unless `autocomplete` is off."""

    name = "square"

    def __init__(
        self,
        access_token: str,
        environment: str | None = None,
        location_id: str | None = None,
        autocomplete: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.environment = environment or settings.square_env_name
        self.location_id = location_id
        self.autocomplete = settings.square_autocomplete if autocomplete is None else autocomplete
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=SQUARE_BASE_URLS[self.environment],
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Square-Version": settings.square_api_version,
                "Content-Type": "application/json",
            },
            timeout=settings.provider_timeout_seconds,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, operation: str, json: dict | None = None) -> dict:
        """Call Square and return the decoded body; raise typed errors otherwise."""

        started = perf_counter()
        try:
            with tracer.start_as_current_span(f"square.{operation}"):
                async with self._client() as client:
                    resp = await client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise ProviderError(f"square {operation} transport error: {exc}") from exc
        finally:
            provider_latency_seconds.labels(
                service=settings.service_name, provider=self.name, operation=operation
            ).observe(max(0.0, perf_counter() - started))

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}
        if resp.status_code >= 500:
            raise ProviderError(f"square {operation} failed status={resp.status_code}")
        if resp.status_code >= 400:
            raise SquareApiError(resp.status_code, body.get("errors") or [])
        return body

    async def resolve_location_id(self, merchant: MerchantContext | None = None) -> str:
        """Use the known location, else the first location Square lists."""

        if merchant is not None and merchant.location_id:
            return merchant.location_id
        if self.location_id:
            return self.location_id
        body = await self._request("GET", "/v2/locations", "list_locations")
        locations = body.get("locations") or []
        if not locations:
            raise NotFoundError("No locations found for merchant")
        self.location_id = locations[0]["id"]
        return self.location_id

    async def authorize(
        self, amount: int, currency: str, source: str | None, merchant: MerchantContext
    ) -> Authorization:
        if not source:
            raise DeclinedError(DeclineReason.GENERIC_DECLINE, "missing payment source")
        location_id = await self.resolve_location_id(merchant)
        request: dict[str, Any] = {
            "source_id": source,
            "idempotency_key": str(uuid4()),
            "amount_money": {"amount": amount, "currency": currency},
            "autocomplete": self.autocomplete,
            "location_id": location_id,
        }
        if merchant.reference:
            request["reference_id"] = merchant.reference
        if merchant.customer is not None and merchant.customer.email:
            request["buyer_email_address"] = merchant.customer.email
        try:
            body = await self._request("POST", "/v2/payments", "create_payment", json=request)
        except SquareApiError as exc:
            reason = DECLINE_CODES.get(exc.first_code)
            if reason is None and exc.first_category == "PAYMENT_METHOD_ERROR":
                reason = DeclineReason.GENERIC_DECLINE
            if reason is not None:
                raise DeclinedError(reason, exc.detail) from exc
            raise

        payment = body.get("payment") or {}
        if not payment.get("id"):
            raise ProviderError("square create_payment returned no payment")
        money = payment.get("amount_money") or {}
        return Authorization(
            provider_transaction_id=payment["id"],
            captured=payment.get("status") == "COMPLETED",
            amount=int(money.get("amount", amount)),
            currency=money.get("currency", currency),
            receipt_url=payment.get("receipt_url"),
            receipt_number=payment.get("receipt_number"),
            raw={"status": payment.get("status"), "location_id": location_id},
        )

    async def create_merchant_order(
        self, line_items: list[LineItem], fulfillment: FulfillmentIntent, merchant: MerchantContext
    ) -> MerchantOrder:
        location_id = await self.resolve_location_id(merchant)
        pickup_at = fulfillment.pickup_at or (
            datetime.now(timezone.utc) + DEFAULT_PICKUP_DELAY
        ).isoformat()
        recipient: dict[str, Any] = {"display_name": fulfillment.recipient_name or "Customer"}
        if fulfillment.recipient_email:
            recipient["email_address"] = fulfillment.recipient_email
        order: dict[str, Any] = {
            "location_id": location_id,
            "state": "OPEN",
            "source": {"name": "SipLocal App"},
            "line_items": [
                {
                    "name": item.name,
                    "quantity": str(item.quantity),
                    "base_price_money": {"amount": item.price, "currency": fulfillment.currency},
                    **({"note": item.customizations} if item.customizations else {}),
                }
                for item in line_items
            ],
            "fulfillments": [
                {
                    "type": "PICKUP",
                    "state": "PROPOSED",
                    "pickup_details": {
                        "recipient": recipient,
                        "pickup_at": pickup_at,
                        "note": fulfillment.note,
                    },
                }
            ],
        }
        if merchant.reference:
            order["reference_id"] = merchant.reference
        body = await self._request(
            "POST", "/v2/orders", "create_order", json={"order": order, "idempotency_key": str(uuid4())}
        )
        order_id = (body.get("order") or {}).get("id")
        if order_id and fulfillment.external_tender_amount:
            await self._record_external_tender(order_id, location_id, fulfillment)
        return MerchantOrder(provider_order_id=order_id)

    async def _record_external_tender(
        self, order_id: str, location_id: str, fulfillment: FulfillmentIntent
    ) -> None:
        """Attach an EXTERNAL payment so the order shows as paid on the POS."""

        try:
            await self._request(
                "POST",
                "/v2/payments",
                "create_external_payment",
                json={
                    "idempotency_key": f"external-{order_id}",
                    "source_id": "EXTERNAL",
                    "external_details": {"type": "OTHER", "source": "SipLocal App"},
                    "amount_money": {
                        "amount": fulfillment.external_tender_amount,
                        "currency": fulfillment.currency,
                    },
                    "order_id": order_id,
                    "location_id": location_id,
                },
            )
        except ProviderError as exc:
            logger.warning("square_external_tender_failed order_id=%s error=%s", order_id, exc.detail)

    async def _get_payment(self, payment_id: str) -> dict:
        body = await self._request("GET", f"/v2/payments/{payment_id}", "get_payment")
        return body.get("payment") or {}

    async def capture(self, provider_transaction_id: str) -> CaptureResult:
        try:
            body = await self._request(
                "POST", f"/v2/payments/{provider_transaction_id}/complete", "complete_payment", json={}
            )
            payment = body.get("payment") or {}
        except ProviderError as exc:
            try:
                payment = await self._get_payment(provider_transaction_id)
            except ProviderError:
                raise CaptureFailedError(exc.detail) from exc
            if payment.get("status") != "COMPLETED":
                raise CaptureFailedError(exc.detail) from exc
            return CaptureResult(
                captured_amount=(payment.get("amount_money") or {}).get("amount"),
                already_captured=True,
                receipt_url=payment.get("receipt_url"),
            )
        return CaptureResult(
            captured_amount=(payment.get("amount_money") or {}).get("amount"),
            receipt_url=payment.get("receipt_url"),
        )

    async def cancel_or_refund(self, provider_transaction_id: str) -> RefundResult:
        try:
            payment = await self._get_payment(provider_transaction_id)
            status = payment.get("status")
            if status in ("CANCELED", "FAILED"):
                return RefundResult(already_cancelled=True)
            if status == "COMPLETED":
                # Deterministic key: a retried refund returns the original refund.
                body = await self._request(
                    "POST",
                    "/v2/refunds",
                    "refund_payment",
                    json={
                        "idempotency_key": f"refund-{provider_transaction_id}",
                        "payment_id": provider_transaction_id,
                        "amount_money": payment.get("amount_money"),
                    },
                )
                return RefundResult(refund_id=(body.get("refund") or {}).get("id"))
            await self._request(
                "POST", f"/v2/payments/{provider_transaction_id}/cancel", "cancel_payment", json={}
            )
            return RefundResult()
        except ProviderError as exc:
            raise CancellationFailedError(exc.detail) from exc

    async def cancel_merchant_order(self, provider_order_id: str, merchant: MerchantContext) -> None:
        body = await self._request("GET", f"/v2/orders/{provider_order_id}", "get_order")
        order = body.get("order") or {}
        if order.get("state") == "CANCELED":
            return
        await self._request(
            "PUT",
            f"/v2/orders/{provider_order_id}",
            "update_order",
            json={
                "order": {
                    "location_id": order.get("location_id") or await self.resolve_location_id(merchant),
                    "version": order.get("version", 1),
                    "state": "CANCELED",
                },
                "idempotency_key": str(uuid4()),
            },
        )
