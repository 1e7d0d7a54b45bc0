"""HTTP surface for order placement, cancellation, capture and credential lookup."""

from contextlib import asynccontextmanager

from fastapi import Body, FastAPI, Query

from sippay.common.config import settings
from sippay.common.db import SessionLocal
from sippay.common.http import install_http_support
from sippay.common.logging import configure_logging
from sippay.common.metrics import metrics_response
from sippay.common.startup import log_startup_config, report_config_validation
from sippay.common.tracing import instrument_app, setup_tracing
from sippay.services.notification.service import NotificationService
from sippay.services.orders.capture import CaptureScheduler
from sippay.services.orders.reconciliation import ReconciliationEngine
from sippay.services.orders.repository import OrderRepository
from sippay.services.orders.schemas import (
    ActionResponse,
    CloverCredentialsResponse,
    MerchantTokensRequest,
    MerchantTokensResponse,
    PaymentIdRequest,
    PlaceOrderRequest,
    PlaceOrderResponse,
)
from sippay.services.orders.service import OrderService
from sippay.services.provider_adapter.service import ProviderRegistry

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "APP_ENV",
        "DATABASE_URL",
        "SQUARE_ENVIRONMENT",
        "CLOVER_ENVIRONMENT",
        "STRIPE_SECRET_KEY",
        "CAPTURE_DELAY_SECONDS",
    ],
)
report_config_validation(settings)

repository = OrderRepository(SessionLocal)
engine = ReconciliationEngine(repository, notifier=NotificationService(SessionLocal))
service = OrderService(repository, engine, ProviderRegistry(), CaptureScheduler())


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Stop pending capture timers and flush ready pushes on shutdown."""

    yield
    await service.scheduler.shutdown()
    await service.engine.drain_notifications()


app = FastAPI(title="SipPay Orders", lifespan=lifespan)
install_http_support(app)
instrument_app(app)


@app.get("/merchant-tokens", response_model=MerchantTokensResponse)
def get_merchant_tokens(merchant_id: str | None = Query(default=None, alias="merchantId")):
    """Look up one merchant's POS credentials."""

    return MerchantTokensResponse(tokens=service.get_merchant_tokens(merchant_id))


@app.post("/merchant-tokens", response_model=MerchantTokensResponse)
def post_merchant_tokens(
    req: MerchantTokensRequest | None = Body(default=None),
    merchant_id: str | None = Query(default=None, alias="merchantId"),
):
    """Same lookup; `merchantId` may come in the body or the query string."""

    body_id = req.merchant_id if req is not None else None
    return MerchantTokensResponse(tokens=service.get_merchant_tokens(body_id or merchant_id))


@app.get("/clover-credentials", response_model=CloverCredentialsResponse)
def get_clover_credentials(merchant_id: str | None = Query(default=None, alias="merchantId")):
    """Look up one Clover shop's API access."""

    return CloverCredentialsResponse(credentials=service.get_clover_credentials(merchant_id))


@app.post("/clover-credentials", response_model=CloverCredentialsResponse)
def post_clover_credentials(
    req: MerchantTokensRequest | None = Body(default=None),
    merchant_id: str | None = Query(default=None, alias="merchantId"),
):
    body_id = req.merchant_id if req is not None else None
    return CloverCredentialsResponse(credentials=service.get_clover_credentials(body_id or merchant_id))


@app.post("/orders", response_model=PlaceOrderResponse)
async def place_order(req: PlaceOrderRequest):
    """Authorize payment, place the merchant order and record it."""

    return await service.place_order(req)


@app.post("/orders/cancel", response_model=ActionResponse)
async def cancel_order(req: PaymentIdRequest):
    return await service.cancel_order(req.payment_id)


@app.post("/orders/complete", response_model=ActionResponse)
async def complete_order(req: PaymentIdRequest):
    """Capture an authorized payment now instead of waiting for the timer."""

    return await service.complete_order(req.payment_id)


@app.get("/orders/{transaction_id}")
def get_order(transaction_id: str):
    return service.get_order(transaction_id)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}
