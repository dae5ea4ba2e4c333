"""Async HTTP client wrapper for the Stripe REST API.

Provides StripeClient with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s). Every lookup is a single GET decoded into the matching
gateway schema; list endpoints are paginated here so callers always see the
complete result.

A 404 is raised as GatewayObjectNotFound and is never retried.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.donation_sync.gateway.schemas import (
    BalanceTransaction,
    Charge,
    Customer,
    Invoice,
    PaymentIntent,
    Payout,
    Refund,
)

logger = structlog.get_logger(__name__)

PAGE_SIZE = 100

_stripe_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)),
)


class GatewayObjectNotFound(Exception):
    """Raised when Stripe answers 404 for a requested object."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Stripe object not found: {path}")


class StripeClient:
    """Async, read-only client for the Stripe objects the donation sync needs.

    Args:
        api_key: Stripe secret key.
        base_url: API root, overridable for tests and proxies.
    """

    TIMEOUT_READ = 20.0

    def __init__(self, api_key: str, base_url: str = "https://api.stripe.com/v1") -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self._headers, timeout=self.TIMEOUT_READ)

    @_stripe_retry
    async def _get(self, path: str, params: list[tuple[str, Any]] | None = None) -> dict:
        async with self._client() as client:
            response = await client.get(f"{self._base_url}{path}", params=params)
            if response.status_code == 404:
                raise GatewayObjectNotFound(path)
            response.raise_for_status()
            return response.json()

    # ── Single objects ──────────────────────────────────────────────────────

    async def get_customer(self, customer_id: str) -> Customer:
        """GET /customers/{id}, expanding payment sources for card addresses."""
        data = await self._get(f"/customers/{customer_id}", [("expand[]", "sources")])
        logger.info("stripe.customer_found", customer_id=customer_id)
        return Customer.model_validate(data)

    async def get_invoice(self, invoice_id: str) -> Invoice:
        """GET /invoices/{id}, expanding the subscription."""
        data = await self._get(f"/invoices/{invoice_id}", [("expand[]", "subscription")])
        logger.info("stripe.invoice_found", invoice_id=invoice_id)
        return Invoice.model_validate(data)

    async def get_balance_transaction(self, balance_transaction_id: str) -> BalanceTransaction:
        data = await self._get(f"/balance_transactions/{balance_transaction_id}")
        logger.info("stripe.balance_transaction_found", balance_transaction_id=balance_transaction_id)
        return BalanceTransaction.model_validate(data)

    async def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        """GET /payment_intents/{id}, expanding the latest charge."""
        data = await self._get(
            f"/payment_intents/{payment_intent_id}", [("expand[]", "latest_charge")]
        )
        logger.info("stripe.payment_intent_found", payment_intent_id=payment_intent_id)
        return PaymentIntent.model_validate(data)

    # ── Lists ───────────────────────────────────────────────────────────────

    async def list_balance_transactions(self, payout_id: str) -> list[BalanceTransaction]:
        """List every balance transaction settled by a payout.

        Pages through 100 at a time using the last id of each page as the
        ``starting_after`` cursor, stopping at the first page with fewer than
        100 entries. Sources are expanded down to the charge's customer and
        payment intent.

        Args:
            payout_id: Stripe payout id.

        Returns:
            All balance transactions for the payout, in API order.
        """
        transactions: list[BalanceTransaction] = []
        starting_after: str | None = None
        pages = 0
        while True:
            params: list[tuple[str, Any]] = [
                ("payout", payout_id),
                ("limit", PAGE_SIZE),
                ("expand[]", "data.source"),
                ("expand[]", "data.source.customer"),
                ("expand[]", "data.source.payment_intent"),
            ]
            if starting_after:
                params.append(("starting_after", starting_after))
            data = await self._get("/balance_transactions", params)
            pages += 1
            page = [BalanceTransaction.model_validate(item) for item in data.get("data", [])]
            transactions.extend(page)
            if len(page) < PAGE_SIZE:
                break
            starting_after = page[-1].id

        logger.info(
            "stripe.balance_transactions_listed",
            payout_id=payout_id,
            count=len(transactions),
            pages=pages,
        )
        return transactions

    async def list_refunds(self, charge_id: str, limit: int = 1) -> list[Refund]:
        """GET /refunds?charge={id}, newest first."""
        data = await self._get("/refunds", [("charge", charge_id), ("limit", limit)])
        refunds = [Refund.model_validate(item) for item in data.get("data", [])]
        logger.info("stripe.refunds_listed", charge_id=charge_id, count=len(refunds))
        return refunds

    async def list_payouts(self, start: datetime, end: datetime) -> list[Payout]:
        """List payouts whose arrival date falls in ``[start, end]``."""
        items = await self._list_all(
            "/payouts",
            [
                ("arrival_date[gte]", int(start.timestamp())),
                ("arrival_date[lte]", int(end.timestamp())),
            ],
        )
        return [Payout.model_validate(item) for item in items]

    async def list_charges(self, start: datetime, end: datetime) -> list[Charge]:
        """List charges created in ``[start, end]``, expanding their payment intents."""
        items = await self._list_all(
            "/charges",
            [
                ("created[gte]", int(start.timestamp())),
                ("created[lte]", int(end.timestamp())),
                ("expand[]", "data.payment_intent"),
            ],
        )
        return [Charge.model_validate(item) for item in items]

    async def _list_all(self, path: str, filters: list[tuple[str, Any]]) -> list[dict]:
        """Follow ``has_more`` cursors until the list is exhausted."""
        items: list[dict] = []
        starting_after: str | None = None
        while True:
            params = [*filters, ("limit", PAGE_SIZE)]
            if starting_after:
                params.append(("starting_after", starting_after))
            data = await self._get(path, params)
            page = data.get("data", [])
            items.extend(page)
            if not data.get("has_more") or not page:
                break
            starting_after = page[-1]["id"]

        logger.info("stripe.list_complete", path=path, count=len(items))
        return items
