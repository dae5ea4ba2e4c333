"""Concrete sinks: an HTTP relay to a CRM bridge and a log-only sink.

HttpCrmSink POSTs each normalized event to a CRM bridge service that owns the
actual Salesforce/HubSpot/etc. writes. Calls are retried with tenacity
(3 attempts, exponential backoff 1-10s). The bridge may answer with the ids it
assigned, which are threaded back onto the event.

LoggingCrmSink is the development default when no bridge URL is configured.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.donation_sync.crm.adapter import DonationSink, DonorSink

if TYPE_CHECKING:
    from src.donation_sync.paymentgateway.event import PaymentGatewayEvent

logger = structlog.get_logger(__name__)

_sink_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)),
)


class HttpCrmSink(DonorSink, DonationSink):
    """Relays canonical records to a CRM bridge over HTTP.

    Args:
        base_url: Root URL of the CRM bridge.
        token: Bearer token for the bridge; omitted from headers when empty.
    """

    TIMEOUT = 30.0

    def __init__(self, base_url: str, token: str = "") -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self._headers, timeout=self.TIMEOUT)

    @_sink_retry
    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(f"{self._base_url}{path}", json=payload)
            response.raise_for_status()
            if not response.content:
                return {}
            data = response.json()
            return data if isinstance(data, dict) else {}

    async def process_account(self, event: PaymentGatewayEvent) -> None:
        data = await self._post("/accounts", event.to_payload())
        if data.get("account_id"):
            event.set_crm_account_id(data["account_id"])
        if data.get("contact_id"):
            event.set_crm_contact_id(data["contact_id"])
        logger.info(
            "crm.account_processed",
            account_id=event.crm_account.id,
            contact_id=event.crm_contact.id,
        )

    async def create_donation(self, event: PaymentGatewayEvent) -> None:
        data = await self._post("/donations", event.to_payload())
        if data.get("recurring_donation_id"):
            event.set_crm_recurring_donation_id(data["recurring_donation_id"])
        if data.get("donation_id"):
            event.set_crm_donation_id(data["donation_id"])
        logger.info(
            "crm.donation_created",
            transaction_id=event.crm_donation.transaction_id,
            donation_id=event.crm_donation.id,
        )

    async def refund_donation(self, event: PaymentGatewayEvent) -> None:
        await self._post("/donations/refunds", event.to_payload())
        logger.info(
            "crm.donation_refunded",
            transaction_id=event.crm_donation.transaction_id,
            refund_id=event.crm_donation.refund_id,
        )

    async def process_subscription(self, event: PaymentGatewayEvent) -> None:
        data = await self._post("/recurring-donations", event.to_payload())
        if data.get("recurring_donation_id"):
            event.set_crm_recurring_donation_id(data["recurring_donation_id"])
        logger.info(
            "crm.subscription_processed",
            subscription_id=event.crm_recurring_donation.subscription_id,
            recurring_donation_id=event.crm_recurring_donation.id,
        )

    async def close_recurring_donation(self, event: PaymentGatewayEvent) -> None:
        await self._post("/recurring-donations/close", event.to_payload())
        logger.info(
            "crm.recurring_donation_closed",
            subscription_id=event.crm_recurring_donation.subscription_id,
        )

    async def charge_deposited(self, event: PaymentGatewayEvent) -> None:
        await self._post("/donations/deposits", event.to_payload())
        logger.info(
            "crm.charge_deposited",
            transaction_id=event.crm_donation.transaction_id,
            deposit_id=event.crm_donation.deposit_id,
        )


class LoggingCrmSink(DonorSink, DonationSink):
    """Logs each sink call instead of writing anywhere."""

    async def process_account(self, event: PaymentGatewayEvent) -> None:
        logger.info(
            "crm.log.process_account",
            account_name=event.crm_account.name,
            email=event.crm_contact.email,
        )

    async def create_donation(self, event: PaymentGatewayEvent) -> None:
        donation = event.crm_donation
        logger.info(
            "crm.log.create_donation",
            transaction_id=donation.transaction_id,
            amount=donation.amount,
            status=donation.status,
            recurring=event.is_transaction_recurring(),
        )

    async def refund_donation(self, event: PaymentGatewayEvent) -> None:
        logger.info(
            "crm.log.refund_donation",
            transaction_id=event.crm_donation.transaction_id,
            refund_id=event.crm_donation.refund_id,
        )

    async def process_subscription(self, event: PaymentGatewayEvent) -> None:
        recurring = event.crm_recurring_donation
        logger.info(
            "crm.log.process_subscription",
            subscription_id=recurring.subscription_id,
            amount=recurring.amount,
            frequency=recurring.frequency,
        )

    async def close_recurring_donation(self, event: PaymentGatewayEvent) -> None:
        logger.info(
            "crm.log.close_recurring_donation",
            subscription_id=event.crm_recurring_donation.subscription_id,
        )

    async def charge_deposited(self, event: PaymentGatewayEvent) -> None:
        logger.info(
            "crm.log.charge_deposited",
            transaction_id=event.crm_donation.transaction_id,
            deposit_id=event.crm_donation.deposit_id,
        )
