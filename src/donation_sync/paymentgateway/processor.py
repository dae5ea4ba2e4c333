"""StripeProcessor -- event-type switch and fetch orchestration.

Turns one decoded GatewayEvent into sink calls. Related objects are fetched
one at a time, in order, because later lookups depend on ids returned by
earlier ones (the full PaymentIntent carries the charge whose balance
transaction is needed).

Handled event types:
- charge.succeeded / charge.failed (skipped when the charge has an intent)
- payment_intent.succeeded / payment_intent.payment_failed
- charge.refunded (Charge-wrapped or bare Refund)
- customer.subscription.created (see guard.py)
- customer.subscription.deleted
- payout.paid (see payouts.py)
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import structlog

from src.donation_sync.config import MetadataKeys, Settings
from src.donation_sync.crm.adapter import DonationSink, DonorSink
from src.donation_sync.crm.http import HttpCrmSink, LoggingCrmSink
from src.donation_sync.gateway.client import StripeClient
from src.donation_sync.gateway.schemas import (
    BalanceTransaction,
    Charge,
    GatewayEvent,
    Invoice,
    PaymentIntent,
    Payout,
    Refund,
    Subscription,
)
from src.donation_sync.paymentgateway.event import PaymentGatewayEvent
from src.donation_sync.paymentgateway.guard import (
    SubscriptionDecision,
    evaluate_subscription_created,
)
from src.donation_sync.paymentgateway.payouts import PayoutReconciler

logger = structlog.get_logger(__name__)

# Event type -> object types its payload may carry.
EVENT_OBJECT_TYPES: dict[str, tuple[str, ...]] = {
    "charge.succeeded": ("charge",),
    "charge.failed": ("charge",),
    "charge.refunded": ("charge", "refund"),
    "payment_intent.succeeded": ("payment_intent",),
    "payment_intent.payment_failed": ("payment_intent",),
    "customer.subscription.created": ("subscription",),
    "customer.subscription.deleted": ("subscription",),
    "payout.paid": ("payout",),
}


class StripeProcessor:
    """Processes decoded Stripe webhook events into CRM sink calls.

    Args:
        client: Stripe client for secondary lookups.
        donor_sink: Account/contact sink.
        donation_sink: Donation and recurring-donation sink.
        org_currency: Currency the organization receives funds in.
        metadata_keys: Metadata field names carrying CRM identifiers.
    """

    def __init__(
        self,
        client: StripeClient,
        donor_sink: DonorSink,
        donation_sink: DonationSink,
        org_currency: str = "USD",
        metadata_keys: MetadataKeys | None = None,
    ) -> None:
        self._client = client
        self._donor_sink = donor_sink
        self._donation_sink = donation_sink
        self._org_currency = org_currency
        self._metadata_keys = metadata_keys or MetadataKeys()
        self._payouts = PayoutReconciler(client, self, donation_sink)
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "charge.succeeded": self.on_charge,
            "charge.failed": self.on_charge,
            "charge.refunded": self.on_charge_refunded,
            "payment_intent.succeeded": self.on_payment_intent,
            "payment_intent.payment_failed": self.on_payment_intent,
            "customer.subscription.created": self.on_subscription_created,
            "customer.subscription.deleted": self.on_subscription_deleted,
            "payout.paid": self.on_payout_paid,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> StripeProcessor:
        """Wire a processor from settings: HTTP CRM sink when a bridge URL is set, else log-only."""
        client = StripeClient(settings.STRIPE_SECRET_KEY, settings.STRIPE_API_BASE)
        sink: HttpCrmSink | LoggingCrmSink
        if settings.CRM_SINK_URL:
            sink = HttpCrmSink(settings.CRM_SINK_URL, settings.CRM_SINK_TOKEN)
        else:
            sink = LoggingCrmSink()
        return cls(
            client,
            donor_sink=sink,
            donation_sink=sink,
            org_currency=settings.ORG_CURRENCY,
            metadata_keys=settings.metadata_keys(),
        )

    @property
    def client(self) -> StripeClient:
        return self._client

    def new_event(self) -> PaymentGatewayEvent:
        return PaymentGatewayEvent(self._org_currency, self._metadata_keys)

    async def handle(self, event: GatewayEvent) -> None:
        """Route one event to its handler. Unknown types are logged and dropped."""
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("stripe.event_unhandled", event_id=event.id, event_type=event.type)
            return
        await handler(event.object)

    # ── Event handlers ──────────────────────────────────────────────────────

    async def on_charge(self, charge: Charge) -> None:
        # The intent's own event is authoritative for intent-based charges.
        if charge.payment_intent_id:
            logger.info(
                "stripe.charge_skipped_has_intent",
                charge_id=charge.id,
                payment_intent_id=charge.payment_intent_id,
            )
            return
        event = await self.process_charge(charge)
        await self._donor_sink.process_account(event)
        await self._donation_sink.create_donation(event)

    async def on_payment_intent(self, payment_intent: PaymentIntent) -> None:
        event = await self.process_payment_intent(payment_intent.id)
        await self._donor_sink.process_account(event)
        await self._donation_sink.create_donation(event)

    async def on_charge_refunded(self, obj: Charge | Refund) -> None:
        refund = await self._refund_from(obj)
        if refund is None:
            logger.warning("stripe.refund_missing", charge_id=obj.id)
            return
        logger.info("stripe.refund_found", refund_id=refund.id, charge_id=refund.charge)
        event = self.new_event()
        event.init_refund(refund)
        await self._donation_sink.refund_donation(event)

    async def on_subscription_created(self, subscription: Subscription) -> None:
        decision = evaluate_subscription_created(subscription)
        if decision == SubscriptionDecision.SKIP_MIGRATED:
            logger.info("stripe.subscription_skipped_auto_migrated", subscription_id=subscription.id)
            return
        if decision == SubscriptionDecision.DEFER:
            logger.info(
                "stripe.subscription_deferred_to_first_charge",
                subscription_id=subscription.id,
                status=subscription.status,
            )
            return

        event = await self.process_subscription(subscription)
        await self._donor_sink.process_account(event)
        await self._donation_sink.process_subscription(event)

    async def on_subscription_deleted(self, subscription: Subscription) -> None:
        event = await self.process_subscription(subscription)
        await self._donation_sink.close_recurring_donation(event)

    async def on_payout_paid(self, payout: Payout) -> None:
        await self._payouts.reconcile(payout)

    # ── Enrichment ──────────────────────────────────────────────────────────

    async def process_charge(
        self,
        charge: Charge,
        balance_transaction: BalanceTransaction | None = None,
    ) -> PaymentGatewayEvent:
        """Fetch a charge's related objects and normalize it.

        The balance transaction is fetched only when the charge has settled
        (non-empty id) and the invoice only when the charge has one.
        """
        if balance_transaction is None:
            balance_transaction = await self._balance_transaction(charge)

        customer = None
        if charge.customer_id:
            customer = await self._client.get_customer(charge.customer_id)

        invoice = await self._invoice(charge.invoice)

        event = self.new_event()
        event.init_charge(charge, customer, invoice, balance_transaction)
        return event

    async def process_payment_intent(
        self,
        payment_intent_id: str,
        balance_transaction: BalanceTransaction | None = None,
    ) -> PaymentGatewayEvent:
        """Re-fetch the full intent, then its related objects, and normalize it.

        The balance transaction comes from the intent's charge, and only when
        there is exactly one.
        """
        payment_intent = await self._client.get_payment_intent(payment_intent_id)

        if balance_transaction is None:
            charges = payment_intent.charge_list()
            if len(charges) == 1:
                balance_transaction = await self._balance_transaction(charges[0])

        customer = None
        if payment_intent.customer_id:
            customer = await self._client.get_customer(payment_intent.customer_id)

        invoice = await self._invoice(payment_intent.invoice)

        event = self.new_event()
        event.init_payment_intent(payment_intent, customer, invoice, balance_transaction)
        return event

    async def process_subscription(self, subscription: Subscription) -> PaymentGatewayEvent:
        customer = None
        if subscription.customer_id:
            customer = await self._client.get_customer(subscription.customer_id)
        event = self.new_event()
        event.init_subscription(subscription, customer)
        return event

    async def _balance_transaction(self, charge: Charge) -> BalanceTransaction | None:
        if isinstance(charge.balance_transaction, BalanceTransaction):
            return charge.balance_transaction
        if not charge.balance_transaction_id:
            return None
        return await self._client.get_balance_transaction(charge.balance_transaction_id)

    async def _invoice(self, invoice_id: str | None) -> Invoice | None:
        if not invoice_id:
            return None
        return await self._client.get_invoice(invoice_id)

    async def _refund_from(self, obj: Charge | Refund) -> Refund | None:
        """The refund carried by a ``charge.refunded`` payload, in either shape.

        Charges from API versions 2022-11-15 on no longer embed ``refunds``;
        the charge's latest refund is fetched instead.
        """
        if isinstance(obj, Refund):
            return obj
        if obj.refunds is not None and obj.refunds.data:
            refund = obj.refunds.data[0]
        else:
            fetched = await self._client.list_refunds(obj.id, limit=1)
            if not fetched:
                return None
            refund = fetched[0]
        # Refunds may omit the back-references the parent charge carries.
        update: dict[str, Any] = {}
        if not refund.charge:
            update["charge"] = obj.id
        if not refund.payment_intent and obj.payment_intent_id:
            update["payment_intent"] = obj.payment_intent_id
        return refund.model_copy(update=update) if update else refund
