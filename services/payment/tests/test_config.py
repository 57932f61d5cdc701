"""設定読み込みのテスト"""

import pytest

from app.config import Settings
from app.errors import ConfigurationError


def test_from_env_reads_variables():
    settings = Settings.from_env(
        {
            "STRIPE_SECRET_KEY": "sk_live_x",
            "STRIPE_WEBHOOK_SECRET": "whsec_x",
            "APP_URL": "https://shop.example.com",
            "STRIPE_TIMEOUT": "2.5",
            "STRIPE_WEBHOOK_TOLERANCE": "300",
        }
    )
    assert settings.stripe_secret_key == "sk_live_x"
    assert settings.app_url == "https://shop.example.com"
    assert settings.stripe_timeout == 2.5
    assert settings.webhook_tolerance_seconds == 300


def test_defaults_when_unset():
    settings = Settings.from_env({"STRIPE_SECRET_KEY": ""})
    assert settings.stripe_secret_key == ""
    assert settings.webhook_tolerance_seconds is None
    assert settings.stripe_api_base == "https://api.stripe.com/v1"


def test_webhook_secrets_split_for_rotation():
    settings = Settings(stripe_webhook_secret="whsec_old, whsec_new,")
    assert settings.webhook_secrets == ["whsec_old", "whsec_new"]


def test_require_names_missing_variable():
    settings = Settings(stripe_secret_key="sk_test")
    settings.require("stripe_secret_key")
    with pytest.raises(ConfigurationError) as exc:
        settings.require("stripe_secret_key", "app_url")
    assert exc.value.message == "Missing APP_URL"
    assert exc.value.status_code == 500


def test_require_webhook_secrets():
    assert Settings(stripe_webhook_secret="whsec_a,whsec_b").require_webhook_secrets() == [
        "whsec_a",
        "whsec_b",
    ]
    for raw in ["", ",", " , "]:
        with pytest.raises(ConfigurationError) as exc:
            Settings(stripe_webhook_secret=raw).require_webhook_secrets()
        assert exc.value.message == "Missing STRIPE_WEBHOOK_SECRET"
