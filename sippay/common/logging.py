"""Structured JSON logging with request/order context fields."""

import logging
import sys
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from sippay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
handler_ctx: ContextVar[str] = ContextVar("handler", default="")
transaction_id_ctx: ContextVar[str] = ContextVar("transaction_id", default="")

REDACT_KEYS = {
    "oauth_token",
    "oauthToken",
    "accessToken",
    "access_token",
    "refreshToken",
    "refresh_token",
    "stripeSecretKey",
    "cardNumber",
    "cvv",
    "nonce",
    "tokenId",
    "token_id",
    "providerCredentials",
    "provider_credentials",
}
MAX_LOGGED_STRING = 200


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.handler = handler_ctx.get()
        record.transaction_id = transaction_id_ctx.get()
        return True


def redact(data: Any) -> Any:
    """Return a copy of `data` safe to log: credentials masked, long strings cut."""

    if isinstance(data, dict):
        cleaned = {}
        for key, value in data.items():
            if key in REDACT_KEYS and value is not None:
                cleaned[key] = "[REDACTED]"
            else:
                cleaned[key] = redact(value)
        return cleaned
    if isinstance(data, list):
        return [redact(item) for item in data]
    if isinstance(data, str) and len(data) > MAX_LOGGED_STRING:
        return f"{data[:MAX_LOGGED_STRING - 3]}..."
    return data


def configure_logging() -> None:
    """Configure root logger once per service process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(handler)s %(transaction_id)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("sippay")
