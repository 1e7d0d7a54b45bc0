"""HTTP receiver for signed Square webhook notifications."""

from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from sippay.common.config import settings
from sippay.common.db import SessionLocal
from sippay.common.errors import SipPayError
from sippay.common.http import install_http_support
from sippay.common.logging import configure_logging, logger
from sippay.common.metrics import metrics_response, webhook_events_total
from sippay.common.startup import log_startup_config, report_config_validation
from sippay.common.tracing import instrument_app, setup_tracing
from sippay.services.notification.service import NotificationService
from sippay.services.orders.reconciliation import ReconciliationEngine
from sippay.services.orders.repository import OrderRepository
from sippay.services.webhooks.service import SIGNATURE_HEADER, WebhookService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "APP_ENV", "DATABASE_URL", "REDIS_URL", "SQUARE_WEBHOOK_URL", "SQUARE_WEBHOOK_SIGNATURE_KEY"],
)
report_config_validation(settings)

repository = OrderRepository(SessionLocal)
engine = ReconciliationEngine(repository, notifier=NotificationService(SessionLocal))
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)
service = WebhookService(repository, engine, redis_client=rdb)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Flush in-flight ready pushes on shutdown."""

    yield
    await service.engine.drain_notifications()


app = FastAPI(title="SipPay Webhooks", lifespan=lifespan)
install_http_support(app)
instrument_app(app)


@app.post("/webhooks/square")
async def square_webhook(request: Request):
    """Acknowledge with 200 once processed or intentionally ignored."""

    body = await request.body()
    notification_url = settings.square_webhook_url or str(request.url)
    try:
        outcome = await service.handle(body, request.headers.get(SIGNATURE_HEADER), notification_url)
    except SipPayError as exc:
        webhook_events_total.labels(
            service=settings.service_name, event_type="unknown", outcome=exc.code
        ).inc()
        logger.warning("webhook_rejected status=%s detail=%s", exc.status_code, exc.detail)
        return PlainTextResponse(exc.public_message, status_code=exc.status_code)
    except Exception:
        logger.exception("webhook_processing_failed")
        webhook_events_total.labels(service=settings.service_name, event_type="unknown", outcome="error").inc()
        return PlainTextResponse("Internal server error", status_code=500)
    logger.info("webhook_processed outcome=%s", outcome)
    return PlainTextResponse("OK")


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}
