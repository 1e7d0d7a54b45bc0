"""Clover order desk: places and withdraws orders on a Clover POS.

Clover never moves money here. Payment happens through Stripe (Apple Pay) or
at the counter, and the order is created as a manual transaction.
"""

from time import perf_counter

import httpx

from sippay.common.config import settings
from sippay.common.errors import ProviderError
from sippay.common.logging import logger
from sippay.common.metrics import provider_latency_seconds
from sippay.common.tracing import tracer
from sippay.services.provider_adapter.base import OrderDesk
from sippay.services.provider_adapter.models import (
    FulfillmentIntent,
    LineItem,
    MerchantContext,
    MerchantOrder,
)


CLOVER_BASE_URLS = {
    "production": "https://api.clover.com",
    "sandbox": "https://sandbox.dev.clover.com",
}


class CloverApiError(ProviderError):
    def __init__(self, operation: str, status_code: int) -> None:
        super().__init__(f"clover {operation} failed status={status_code}")
        self.http_status = status_code


class CloverOrderDesk(OrderDesk):
    """Creates an open order, then adds its line items one call at a time."""

    name = "clover"

    def __init__(
        self,
        access_token: str,
        clover_merchant_id: str,
        environment: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.clover_merchant_id = clover_merchant_id
        self.environment = environment or settings.clover_env_name
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=CLOVER_BASE_URLS[self.environment],
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            },
            timeout=settings.provider_timeout_seconds,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, operation: str, json: dict | None = None) -> dict:
        started = perf_counter()
        try:
            with tracer.start_as_current_span(f"clover.{operation}"):
                async with self._client() as client:
                    resp = await client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise ProviderError(f"clover {operation} transport error: {exc}") from exc
        finally:
            provider_latency_seconds.labels(
                service=settings.service_name, provider=self.name, operation=operation
            ).observe(max(0.0, perf_counter() - started))

        if resp.status_code >= 400:
            raise CloverApiError(operation, resp.status_code)
        try:
            return resp.json() if resp.content else {}
        except ValueError:
            return {}

    @property
    def _orders_path(self) -> str:
        return f"/v3/merchants/{self.clover_merchant_id}/orders"

    async def create_merchant_order(
        self, line_items: list[LineItem], fulfillment: FulfillmentIntent, merchant: MerchantContext
    ) -> MerchantOrder:
        body = await self._request(
            "POST",
            self._orders_path,
            "create_order",
            json={
                "currency": fulfillment.currency,
                "state": "open",
                "title": merchant.reference,
                "note": f"{fulfillment.note} - Customer: {fulfillment.recipient_name}",
                "manualTransaction": True,
                "groupLineItems": True,
                "testMode": self.environment != "production",
            },
        )
        order_id = body.get("id")
        if not order_id:
            raise ProviderError("clover create_order returned no order id")

        # Clover quantities are one line item per unit.
        for item in line_items:
            payload = {"name": item.name, "price": item.price, "note": item.customizations or ""}
            for _ in range(item.quantity):
                try:
                    await self._request(
                        "POST", f"{self._orders_path}/{order_id}/line_items", "add_line_item", json=payload
                    )
                except ProviderError as exc:
                    # The order exists already; a missing item is fixed on the POS.
                    logger.error(
                        "clover_line_item_failed order_id=%s item=%s error=%s", order_id, item.name, exc.detail
                    )
        return MerchantOrder(provider_order_id=order_id)

    async def cancel_merchant_order(self, provider_order_id: str, merchant: MerchantContext) -> None:
        try:
            await self._request("DELETE", f"{self._orders_path}/{provider_order_id}", "delete_order")
        except CloverApiError as exc:
            if exc.http_status != 404:
                raise
            logger.info("clover_order_already_gone order_id=%s", provider_order_id)
