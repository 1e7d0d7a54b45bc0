"""Device registration endpoint for order-ready pushes."""

from fastapi import FastAPI

from sippay.common.config import settings
from sippay.common.db import SessionLocal
from sippay.common.http import install_http_support
from sippay.common.logging import configure_logging, logger
from sippay.common.metrics import metrics_response
from sippay.common.startup import log_startup_config
from sippay.common.tracing import instrument_app, setup_tracing
from sippay.services.notification.schemas import DeviceRegistrationRequest
from sippay.services.notification.service import NotificationService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "DATABASE_URL", "ONESIGNAL_APP_ID", "ONESIGNAL_API_KEY"],
)
service = NotificationService(SessionLocal)

app = FastAPI(title="SipPay Notification Service")
install_http_support(app)
instrument_app(app)


@app.post("/devices")
def register_device(req: DeviceRegistrationRequest):
    """Register a OneSignal player id for a user."""

    service.register_device(req.userId, req.deviceId)
    logger.info("device_registered user_id=%s", req.userId)
    return {"success": True}


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
