"""Adapter selection and credential resolution through the real registry."""

import asyncio

import httpx
import pytest

from sippay.common.config import settings
from sippay.common.errors import NotFoundError, ValidationError
from sippay.services.orders.capture import CaptureScheduler
from sippay.services.orders.schemas import PlaceOrderRequest
from sippay.services.orders.service import OrderService
from sippay.services.provider_adapter.clover_adapter import CloverOrderDesk
from sippay.services.provider_adapter.external_adapter import ExternalPaymentAdapter
from sippay.services.provider_adapter.models import MerchantCredentials, PaymentMethod, PosType
from sippay.services.provider_adapter.service import ProviderRegistry
from sippay.services.provider_adapter.square_adapter import SquareAdapter
from sippay.services.provider_adapter.stripe_adapter import StripeAdapter
from test_clover_adapter import CloverStub
from test_square_adapter import SquareStub, payment


CONFIG = settings.model_copy(update={"square_environment": "sandbox", "square_autocomplete": True})
SQUARE = MerchantCredentials(merchant_id="M1", oauth_token="sq-token", location_id="L1")
CLOVER = MerchantCredentials(merchant_id="M1", pos_type=PosType.CLOVER, oauth_token="clv-token", pos_merchant_id="CLV-1")


def test_card_payments_go_to_square():
    provider = ProviderRegistry(config=CONFIG).for_method(PaymentMethod.CARD, SQUARE)

    assert isinstance(provider, SquareAdapter)
    assert provider.location_id == "L1"


def test_card_without_credentials_is_not_found():
    with pytest.raises(NotFoundError):
        ProviderRegistry(config=CONFIG).for_method(PaymentMethod.CARD, None)


def test_card_payments_are_refused_for_clover_shops():
    with pytest.raises(ValidationError):
        ProviderRegistry(config=CONFIG).for_method(PaymentMethod.CARD, CLOVER)


@pytest.mark.parametrize(
    "credentials, desk_type",
    [(SQUARE, SquareAdapter), (CLOVER, CloverOrderDesk), (None, type(None))],
)
def test_pos_orders_follow_the_shop_pos(credentials, desk_type):
    registry = ProviderRegistry(config=CONFIG)

    apple_pay = registry.for_method(PaymentMethod.APPLE_PAY, credentials)
    external = registry.for_method(PaymentMethod.EXTERNAL, credentials)

    assert isinstance(apple_pay, StripeAdapter)
    assert isinstance(external, ExternalPaymentAdapter)
    assert isinstance(apple_pay.order_desk, desk_type)
    assert isinstance(external.order_desk, desk_type)


def test_clover_desk_uses_clover_merchant_id():
    desk = ProviderRegistry(config=CONFIG).order_desk(CLOVER)

    assert desk.clover_merchant_id == "CLV-1"
    assert desk.access_token == "clv-token"


def test_supplied_square_credentials_are_remembered_for_cancel(repository, engine):
    stub = SquareStub(
        {
            ("POST", "/v2/payments"): httpx.Response(200, json=payment("COMPLETED")),
            ("POST", "/v2/orders"): httpx.Response(200, json={"order": {"id": "SQ-ORDER-1"}}),
            ("GET", "/v2/payments/PAY-1"): httpx.Response(200, json=payment("COMPLETED")),
            ("POST", "/v2/refunds"): httpx.Response(200, json={"refund": {"id": "REF-1"}}),
            ("GET", "/v2/orders/SQ-ORDER-1"): httpx.Response(
                200, json={"order": {"id": "SQ-ORDER-1", "state": "OPEN", "version": 1, "location_id": "L1"}}
            ),
            ("PUT", "/v2/orders/SQ-ORDER-1"): httpx.Response(200, json={"order": {"id": "SQ-ORDER-1"}}),
        }
    )
    registry = ProviderRegistry(config=CONFIG, square_transport=httpx.MockTransport(stub))
    request = PlaceOrderRequest.model_validate(
        {
            "nonce": "cnon:card-nonce-ok",
            "amount": 450,
            "merchantId": "M-NO-STORED",
            "providerCredentials": {"oauthToken": "sq-token", "locationId": "L1"},
            "items": [{"name": "Latte", "quantity": 1, "price": 450}],
        }
    )

    async def scenario():
        service = OrderService(repository, engine, registry, CaptureScheduler(delay_seconds=60))
        placed = await service.place_order(request)
        return await service.cancel_order(placed.transaction_id)

    result = asyncio.run(scenario())

    assert result.success
    assert repository.get("PAY-1").status == "CANCELLED"
    assert repository.get("PAY-1").payment_status == "REFUNDED"
    stored = repository.get_merchant_tokens("M-NO-STORED")
    assert stored.oauth_token == "sq-token"
    assert stored.location_id == "L1"
    assert "PUT /v2/orders/SQ-ORDER-1" in stub.paths()
    assert all(r.headers["Authorization"] == "Bearer sq-token" for r in stub.requests)


def test_supplied_clover_credentials_are_remembered_for_cancel(repository, engine):
    orders = "/v3/merchants/CLV-1/orders"
    stub = CloverStub(
        {
            ("POST", orders): httpx.Response(200, json={"id": "CLV-ORDER-1"}),
            ("POST", f"{orders}/CLV-ORDER-1/line_items"): httpx.Response(200, json={"id": "LI-1"}),
            ("DELETE", f"{orders}/CLV-ORDER-1"): httpx.Response(200),
        }
    )
    registry = ProviderRegistry(config=CONFIG, clover_transport=httpx.MockTransport(stub))
    request = PlaceOrderRequest.model_validate(
        {
            "amount": 450,
            "merchantId": "M-CLOVER",
            "paymentMethod": "external",
            "posType": "clover",
            "providerCredentials": {"accessToken": "clv-token", "merchantId": "CLV-1"},
            "items": [{"name": "Latte", "quantity": 1, "price": 450}],
        }
    )

    async def scenario():
        service = OrderService(repository, engine, registry, CaptureScheduler(delay_seconds=60))
        placed = await service.place_order(request)
        await service.cancel_order(placed.transaction_id)
        return placed

    placed = asyncio.run(scenario())

    order = repository.get(placed.transaction_id)
    assert order.order_id == "CLV-ORDER-1"
    assert order.pos_type == "clover"
    assert order.status == "CANCELLED"
    assert repository.get_clover_credentials("M-CLOVER").to_credentials() == {
        "accessToken": "clv-token",
        "merchantId": "CLV-1",
    }
    assert ("DELETE", f"{orders}/CLV-ORDER-1") in [(r.method, r.url.path) for r in stub.requests]
