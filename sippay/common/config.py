"""Central environment-driven settings shared by all services.

Each service process loads this once at startup. Missing secrets never crash a
non-production run; `report_config_validation` decides how loudly to complain.
"""

from dataclasses import dataclass, field

from pydantic_settings import BaseSettings, SettingsConfigDict

from sippay.common.errors import ConfigurationError


@dataclass
class ConfigValidation:
    """Outcome of checking the loaded settings for absent secrets."""

    missing_critical: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "sippay"
    app_env: str = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./sippay.db"
    redis_url: str = "redis://redis:6379/0"
    otel_exporter_otlp_endpoint: str = ""
    square_environment: str | None = None
    square_webhook_signature_key: str | None = None
    square_webhook_url: str = ""
    square_api_version: str = "2024-10-17"
    square_autocomplete: bool = True
    clover_environment: str | None = None
    stripe_secret_key: str | None = None
    onesignal_app_id: str | None = None
    onesignal_api_key: str | None = None
    capture_delay_seconds: float = 30.0
    webhook_dedupe_ttl_seconds: int = 86400
    provider_timeout_seconds: float = 10.0
    default_currency: str = "USD"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def square_env_name(self) -> str:
        """Resolved Square environment; anything but `production` is sandbox."""

        if (self.square_environment or "").lower() == "production":
            return "production"
        return "sandbox"

    @property
    def clover_env_name(self) -> str:
        if (self.clover_environment or "").lower() == "production":
            return "production"
        return "sandbox"

    def validate_secrets(self) -> ConfigValidation:
        result = ConfigValidation()
        if not self.stripe_secret_key:
            result.missing_critical.append("STRIPE_SECRET_KEY")
        if not self.square_webhook_signature_key:
            result.missing_critical.append("SQUARE_WEBHOOK_SIGNATURE_KEY")
        if not self.onesignal_app_id or not self.onesignal_api_key:
            result.warnings.append(
                "OneSignal credentials missing; order-ready push notifications will be disabled."
            )
        if not self.square_environment:
            result.warnings.append("SQUARE_ENVIRONMENT not set; defaulting to sandbox.")
        return result


def require_config_value(value: str | None, key: str) -> str:
    """Return `value` or raise when an operation needs a setting that is unset."""

    if not value:
        raise ConfigurationError(f"missing required configuration value: {key}")
    return value


settings = CommonSettings()
