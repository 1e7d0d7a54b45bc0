import logging

import pytest

from sippay.common.config import CommonSettings, require_config_value
from sippay.common.errors import ConfigurationError
from sippay.common.logging import redact
from sippay.common.startup import _safe_env, report_config_validation


def make_settings(**overrides) -> CommonSettings:
    values = {
        "app_env": "development",
        "stripe_secret_key": "sk_test_123",
        "square_webhook_signature_key": "sig",
        "square_environment": "sandbox",
        "onesignal_app_id": "app",
        "onesignal_api_key": "key",
    }
    values.update(overrides)
    return CommonSettings(_env_file=None, **values)


def test_complete_configuration_has_nothing_to_report():
    validation = make_settings().validate_secrets()

    assert validation.missing_critical == []
    assert validation.warnings == []


def test_missing_secrets_are_classified():
    validation = make_settings(
        stripe_secret_key=None, square_webhook_signature_key=None, onesignal_api_key=None, square_environment=None
    ).validate_secrets()

    assert validation.missing_critical == ["STRIPE_SECRET_KEY", "SQUARE_WEBHOOK_SIGNATURE_KEY"]
    assert len(validation.warnings) == 2


def test_production_refuses_to_start_without_critical_secrets():
    with pytest.raises(RuntimeError, match="STRIPE_SECRET_KEY"):
        report_config_validation(make_settings(app_env="production", stripe_secret_key=None))


def test_development_only_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="sippay"):
        report_config_validation(make_settings(stripe_secret_key=None))

    assert "config_missing_critical" in caplog.text


def test_square_environment_defaults_to_sandbox():
    assert make_settings(square_environment=None).square_env_name == "sandbox"
    assert make_settings(square_environment="PRODUCTION").square_env_name == "production"
    assert make_settings(square_environment="staging").square_env_name == "sandbox"


def test_require_config_value():
    assert require_config_value("sk_live", "STRIPE_SECRET_KEY") == "sk_live"
    with pytest.raises(ConfigurationError) as excinfo:
        require_config_value(None, "STRIPE_SECRET_KEY")
    assert excinfo.value.status_code == 503
    assert "STRIPE_SECRET_KEY" not in excinfo.value.public_message


def test_secret_env_values_are_redacted_in_startup_logs(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_live_abc")
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.delenv("ONESIGNAL_APP_ID", raising=False)

    assert _safe_env("STRIPE_SECRET_KEY") == "<redacted>"
    assert _safe_env("APP_ENV") == "staging"
    assert _safe_env("ONESIGNAL_APP_ID") == "<unset>"


def test_redact_masks_credentials_and_truncates():
    cleaned = redact(
        {
            "nonce": "cnon:secret",
            "providerCredentials": {"oauthToken": "sq-token"},
            "items": [{"name": "x" * 500}],
            "amount": 450,
        }
    )

    assert cleaned["nonce"] == "[REDACTED]"
    assert cleaned["providerCredentials"] == "[REDACTED]"
    assert cleaned["amount"] == 450
    assert len(cleaned["items"][0]["name"]) == 200
