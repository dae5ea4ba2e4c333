"""Unit tests for Sentry setup and logging configuration."""

from __future__ import annotations

from unittest.mock import patch

import structlog

from src.donation_sync.api.middleware.logging import configure_structlog
from src.donation_sync.core.monitoring import init_sentry


class TestInitSentry:
    def test_before_send_tags_bound_event(self):
        with patch("src.donation_sync.core.monitoring.sentry_sdk.init") as mock_init:
            init_sentry(dsn="https://key@sentry.test/1", environment="production")

        kwargs = mock_init.call_args.kwargs
        assert kwargs["traces_sample_rate"] == 0.1
        before_send = kwargs["before_send"]

        structlog.contextvars.bind_contextvars(event_id="evt_1", event_type="charge.succeeded")
        try:
            event = before_send({}, {})
        finally:
            structlog.contextvars.clear_contextvars()

        assert event["tags"] == {"event_id": "evt_1", "event_type": "charge.succeeded"}

    def test_before_send_without_context(self):
        with patch("src.donation_sync.core.monitoring.sentry_sdk.init") as mock_init:
            init_sentry(dsn="https://key@sentry.test/1", environment="development")

        kwargs = mock_init.call_args.kwargs
        assert kwargs["traces_sample_rate"] == 1.0
        assert kwargs["before_send"]({"tags": {"a": "b"}}, {}) == {"tags": {"a": "b"}}


class TestConfigureStructlog:
    def test_merges_contextvars(self):
        configure_structlog()
        processors = structlog.get_config()["processors"]
        assert processors[0] is structlog.contextvars.merge_contextvars
