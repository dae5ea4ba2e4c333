"""Shared fixtures for the donation sync tests.

Provides:
- AsyncMock Stripe client and CRM sinks
- A StripeProcessor wired to the mocks
- FastAPI test app with app.state populated by hand (no lifespan) and an
  async HTTP client over ASGITransport
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.donation_sync.config import MetadataKeys
from src.donation_sync.crm.adapter import DonationSink, DonorSink
from src.donation_sync.gateway.client import StripeClient
from src.donation_sync.paymentgateway.processor import StripeProcessor


# ── Mocks ───────────────────────────────────────────────────────────────────


@pytest.fixture
def metadata_keys() -> MetadataKeys:
    return MetadataKeys(
        account=["sf_account_id"],
        contact=["sf_contact_id"],
        campaign=["sf_campaign_id", "campaign"],
        record_type=["sf_record_type_id"],
    )


@pytest.fixture
def mock_client():
    """AsyncMock StripeClient; tests set return values per call."""
    return AsyncMock(spec=StripeClient)


@pytest.fixture
def donor_sink():
    return AsyncMock(spec=DonorSink)


@pytest.fixture
def donation_sink():
    return AsyncMock(spec=DonationSink)


@pytest.fixture
def processor(mock_client, donor_sink, donation_sink, metadata_keys) -> StripeProcessor:
    return StripeProcessor(
        mock_client,
        donor_sink=donor_sink,
        donation_sink=donation_sink,
        org_currency="USD",
        metadata_keys=metadata_keys,
    )


# ── HTTP app ────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_dispatcher():
    """Dispatcher stand-in so route tests control the outcome directly."""
    return MagicMock()


@pytest.fixture
def app(mock_dispatcher):
    """FastAPI app with state set manually; the lifespan is not run."""
    from src.donation_sync.main import create_app

    application = create_app()
    application.state.webhook_dispatcher = mock_dispatcher
    application.state.worker_pool = None
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
