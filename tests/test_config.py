"""Tests for CommerceConfig."""

from decimal import Decimal

import pytest

from agentmarket.config import CommerceConfig


class TestCommerceConfig:
    def test_defaults(self):
        config = CommerceConfig()

        assert config.platform_fee_percent == Decimal("10")
        assert config.environment == "development"
        assert config.require_webhook_secret is False
        assert config.webhook_max_age_seconds == 300
        assert config.timeout_multiplier == 2

    def test_production_requires_secret_by_default(self):
        assert CommerceConfig(environment="production").require_webhook_secret is True

    def test_explicit_secret_setting_wins(self):
        assert CommerceConfig(environment="production", require_webhook_secret=False).require_webhook_secret is False

    def test_fee_coerced_to_decimal(self):
        assert CommerceConfig(platform_fee_percent="12.5").platform_fee_percent == Decimal("12.5")

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"platform_fee_percent": -1}, "Platform fee"),
            ({"platform_fee_percent": 100}, "Platform fee"),
            ({"environment": "staging"}, "Invalid environment"),
            ({"webhook_max_age_seconds": 0}, "max age"),
            ({"webhook_future_skew_seconds": -1}, "future skew"),
            ({"dispatch_timeout_seconds": 0}, "Dispatch timeout"),
            ({"payment_timeout_seconds": 0}, "Payment timeout"),
            ({"timeout_multiplier": 0}, "multiplier"),
            ({"max_for_each_items": 0}, "for_each"),
        ],
    )
    def test_invalid(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            CommerceConfig(**kwargs)

    def test_callback_url(self):
        config = CommerceConfig(callback_base_url="https://api.example.com/")

        assert config.callback_url("job-1") == "https://api.example.com/api/v1/jobs/job-1/deliver"


class TestFromEnv:
    """AGENTMARKET_* environment variables."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "AGENTMARKET_PLATFORM_FEE_PERCENT",
            "AGENTMARKET_ENV",
            "AGENTMARKET_REQUIRE_WEBHOOK_SECRET",
            "AGENTMARKET_DISPATCH_TIMEOUT",
            "AGENTMARKET_PAYMENT_TIMEOUT",
            "AGENTMARKET_CALLBACK_BASE_URL",
            "AGENTMARKET_MIN_BALANCE_ALERT",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_empty_env_uses_defaults(self):
        assert CommerceConfig.from_env() == CommerceConfig()

    def test_reads_variables(self, monkeypatch):
        monkeypatch.setenv("AGENTMARKET_PLATFORM_FEE_PERCENT", "7.5")
        monkeypatch.setenv("AGENTMARKET_ENV", " Production ")
        monkeypatch.setenv("AGENTMARKET_REQUIRE_WEBHOOK_SECRET", "no")
        monkeypatch.setenv("AGENTMARKET_DISPATCH_TIMEOUT", "2.5")
        monkeypatch.setenv("AGENTMARKET_PAYMENT_TIMEOUT", "1.5")
        monkeypatch.setenv("AGENTMARKET_CALLBACK_BASE_URL", "https://market.example.com")
        monkeypatch.setenv("AGENTMARKET_MIN_BALANCE_ALERT", "5")

        config = CommerceConfig.from_env()

        assert config.platform_fee_percent == Decimal("7.5")
        assert config.environment == "production"
        assert config.require_webhook_secret is False
        assert config.dispatch_timeout_seconds == 2.5
        assert config.payment_timeout_seconds == 1.5
        assert config.callback_base_url == "https://market.example.com"
        assert config.low_balance_threshold == Decimal("5")

    def test_invalid_fee(self, monkeypatch):
        monkeypatch.setenv("AGENTMARKET_PLATFORM_FEE_PERCENT", "ten")

        with pytest.raises(ValueError, match="AGENTMARKET_PLATFORM_FEE_PERCENT"):
            CommerceConfig.from_env()
