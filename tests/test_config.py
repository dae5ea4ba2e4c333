"""Unit tests for settings and processor wiring."""

from __future__ import annotations

from src.donation_sync.config import Environment, Settings
from src.donation_sync.crm.http import HttpCrmSink, LoggingCrmSink
from src.donation_sync.paymentgateway.processor import StripeProcessor


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.ENVIRONMENT == Environment.development
        assert settings.ORG_CURRENCY == "USD"
        assert settings.STRIPE_WEBHOOK_TOLERANCE == 300
        assert settings.WORKER_COUNT == 4

    def test_metadata_keys_split_and_trimmed(self):
        settings = Settings(
            _env_file=None,
            METADATA_ACCOUNT_KEYS=" sf_account_id , npsp_account ,,",
            METADATA_CAMPAIGN_KEYS="campaign",
        )
        keys = settings.metadata_keys()
        assert keys.account == ["sf_account_id", "npsp_account"]
        assert keys.campaign == ["campaign"]

    def test_environment_from_env(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("WORKER_COUNT", "8")
        settings = Settings(_env_file=None)
        assert settings.ENVIRONMENT == Environment.production
        assert settings.WORKER_COUNT == 8


class TestProcessorWiring:
    def test_logging_sink_without_bridge_url(self):
        processor = StripeProcessor.from_settings(Settings(_env_file=None, CRM_SINK_URL=""))
        assert isinstance(processor._donation_sink, LoggingCrmSink)
        assert processor._donor_sink is processor._donation_sink

    def test_http_sink_with_bridge_url(self):
        settings = Settings(_env_file=None, CRM_SINK_URL="https://bridge.test", ORG_CURRENCY="eur")
        processor = StripeProcessor.from_settings(settings)
        assert isinstance(processor._donation_sink, HttpCrmSink)
        assert processor.new_event().org_currency == "EUR"
