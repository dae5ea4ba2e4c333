"""Payout reconciliation -- one ``payout.paid`` event into N deposit records.

A payout settles many charges at once. Each charge-sourced balance
transaction in the payout is enriched into its own PaymentGatewayEvent,
tagged with the payout id and arrival date, and handed to the donation
sink's ``charge_deposited`` separately.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.donation_sync.crm.adapter import DonationSink
from src.donation_sync.gateway.client import StripeClient
from src.donation_sync.gateway.schemas import Payout

if TYPE_CHECKING:
    from src.donation_sync.paymentgateway.event import PaymentGatewayEvent
    from src.donation_sync.paymentgateway.processor import StripeProcessor

logger = structlog.get_logger(__name__)


class PayoutReconciler:
    """Expands a payout into per-transaction deposit notifications.

    Args:
        client: Stripe client used to list the payout's balance transactions.
        processor: Enriches each underlying charge or payment intent.
        donation_sink: Receives one ``charge_deposited`` call per transaction.
    """

    def __init__(
        self,
        client: StripeClient,
        processor: StripeProcessor,
        donation_sink: DonationSink,
    ) -> None:
        self._client = client
        self._processor = processor
        self._donation_sink = donation_sink

    async def reconcile(self, payout: Payout) -> list[PaymentGatewayEvent]:
        """Emit a deposit notification for every charge settled by ``payout``.

        Balance transactions with a non-charge source (adjustments, fees,
        transfers) are skipped, as are charges without a customer, which
        are reversal refunds rather than donations.

        Returns:
            The deposited events, in balance-transaction order.
        """
        transactions = await self._client.list_balance_transactions(payout.id)
        deposited: list[PaymentGatewayEvent] = []
        skipped = 0

        for transaction in transactions:
            charge = transaction.source_charge
            if charge is None:
                skipped += 1
                continue
            if not charge.customer_id:
                logger.info(
                    "payout.reversal_refund_skipped",
                    payout_id=payout.id,
                    charge_id=charge.id,
                )
                skipped += 1
                continue

            if not charge.payment_intent_id:
                event = await self._processor.process_charge(charge, balance_transaction=transaction)
            else:
                event = await self._processor.process_payment_intent(
                    charge.payment_intent_id, balance_transaction=transaction
                )
            event.init_deposit(payout)
            await self._donation_sink.charge_deposited(event)
            deposited.append(event)

        logger.info(
            "payout.reconciled",
            payout_id=payout.id,
            balance_transactions=len(transactions),
            deposited=len(deposited),
            skipped=skipped,
        )
        return deposited
