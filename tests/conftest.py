"""Shared fixtures: in-memory database, fake provider and notifier."""

import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("SQUARE_WEBHOOK_SIGNATURE_KEY", "test-signature-key")
os.environ.setdefault("SQUARE_WEBHOOK_URL", "https://sippay.test/webhooks/square")
os.environ.setdefault("SQUARE_ENVIRONMENT", "sandbox")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sippay.common.db import Base
from sippay.common.errors import CancellationFailedError, CaptureFailedError, ProviderError
from sippay.services.notification import models as notification_models  # noqa: F401
from sippay.services.orders.capture import CaptureScheduler
from sippay.services.orders.reconciliation import ReconciliationEngine
from sippay.services.orders.repository import OrderRepository
from sippay.services.orders.service import OrderService
from sippay.services.provider_adapter.base import PaymentProvider
from sippay.services.provider_adapter.models import (
    Authorization,
    CaptureResult,
    MerchantOrder,
    RefundResult,
)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return OrderRepository(session_factory)


class FakeProvider(PaymentProvider):
    """Records every call; behaviour is toggled through attributes."""

    name = "fake"

    def __init__(self, captured: bool = True, transaction_id: str = "T1", order_id: str | None = "SQ-ORDER-1"):
        self.captured = captured
        self.transaction_id = transaction_id
        self.order_id = order_id
        self.calls: list[tuple] = []
        self.captured_ids: set[str] = set()
        self.cancelled_ids: set[str] = set()
        self.fail_authorize: Exception | None = None
        self.fail_merchant_order = False
        self.fail_capture = False
        self.fail_cancel = False

    async def authorize(self, amount, currency, source, merchant):
        self.calls.append(("authorize", amount, currency, source))
        if self.fail_authorize is not None:
            raise self.fail_authorize
        return Authorization(
            provider_transaction_id=self.transaction_id,
            captured=self.captured,
            amount=amount,
            currency=currency,
            receipt_url="https://receipts.test/T1" if self.captured else None,
        )

    async def create_merchant_order(self, line_items, fulfillment, merchant):
        self.calls.append(("create_merchant_order", [item.name for item in line_items]))
        if self.fail_merchant_order:
            raise ProviderError("square create_order failed status=503")
        return MerchantOrder(provider_order_id=self.order_id)

    async def capture(self, provider_transaction_id):
        self.calls.append(("capture", provider_transaction_id))
        if self.fail_capture:
            raise CaptureFailedError("authorization expired")
        already = provider_transaction_id in self.captured_ids
        self.captured_ids.add(provider_transaction_id)
        return CaptureResult(captured_amount=450, already_captured=already)

    async def cancel_or_refund(self, provider_transaction_id):
        self.calls.append(("cancel_or_refund", provider_transaction_id))
        if self.fail_cancel:
            raise CancellationFailedError("provider unavailable")
        already = provider_transaction_id in self.cancelled_ids
        self.cancelled_ids.add(provider_transaction_id)
        return RefundResult(already_cancelled=already)

    async def cancel_merchant_order(self, provider_order_id, merchant):
        self.calls.append(("cancel_merchant_order", provider_order_id))

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeRegistry:
    def __init__(self, provider: PaymentProvider) -> None:
        self.provider = provider
        self.requests: list[tuple] = []

    def for_method(self, method, credentials):
        self.requests.append((method, credentials))
        return self.provider


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple] = []

    async def notify_order_ready(self, user_id, summary):
        self.sent.append((user_id, summary))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def engine(repository, notifier):
    return ReconciliationEngine(repository, notifier=notifier, service_name="test")


@pytest.fixture
def make_service(repository, engine, provider):
    """Build an OrderService; call it inside the running event loop."""

    def _make(delay_seconds: float = 0.05) -> OrderService:
        return OrderService(
            repository,
            engine,
            FakeRegistry(provider),
            CaptureScheduler(delay_seconds=delay_seconds),
        )

    return _make


def seed_order(repository: OrderRepository, transaction_id: str = "T1", **overrides):
    fields = {
        "status": "SUBMITTED",
        "amount": 450,
        "currency": "USD",
        "merchant_id": "M1",
        "payment_method": "card",
        "items": [{"name": "Latte", "quantity": 1, "price": 450}],
        "user_id": "U1",
        "shop_name": "Blue Door Coffee",
        "order_id": "SQ-ORDER-1",
    }
    fields.update(overrides)
    return repository.create(transaction_id, fields)
