"""Startup-time helpers for safe config logging and secret validation."""

import os

from sippay.common.config import CommonSettings
from sippay.common.logging import logger


def _safe_env(name: str) -> str:
    """Return env value with simple redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(secret in name for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN", "DATABASE_URL"]):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)


def report_config_validation(config: CommonSettings) -> None:
    """Log missing secrets; refuse to start a production process without them."""

    validation = config.validate_secrets()
    for warning in validation.warnings:
        logger.warning("config_warning detail=%s", warning)
    if not validation.missing_critical:
        return
    detail = ", ".join(validation.missing_critical)
    if config.is_production:
        logger.error("config_missing_critical keys=%s", detail)
        raise RuntimeError(f"missing critical environment variables: {detail}")
    logger.warning("config_missing_critical keys=%s", detail)
