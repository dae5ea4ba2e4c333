"""Unit tests for PayoutReconciler.

Tests cover:
- One deposit notification per charge-sourced balance transaction
- Non-charge sources and customer-less charges skipped
- Charge vs payment-intent enrichment per transaction
- Deposit id and arrival date tagging
"""

from __future__ import annotations

from datetime import datetime, timezone

from src.donation_sync.gateway.schemas import (
    BalanceTransaction,
    Customer,
    GatewayEvent,
    PaymentIntent,
    Payout,
)
from src.donation_sync.paymentgateway.payouts import PayoutReconciler
from tests.payloads import (
    CREATED,
    balance_transaction_payload,
    charge_payload,
    customer_payload,
    event_payload,
    payment_intent_payload,
)

ARRIVAL = CREATED + 2 * 86400


def _payout() -> Payout:
    return Payout.model_validate({"id": "po_1", "object": "payout", "arrival_date": ARRIVAL, "status": "paid"})


def _charge_bt(index: int, **charge_overrides) -> BalanceTransaction:
    charge = charge_payload(id=f"ch_{index}", **charge_overrides)
    return BalanceTransaction.model_validate(
        balance_transaction_payload(id=f"txn_{index}", source=charge)
    )


class TestPayoutReconciler:
    async def test_every_charge_deposited(self, processor, mock_client, donation_sink):
        mock_client.list_balance_transactions.return_value = [_charge_bt(i) for i in range(150)]
        mock_client.get_customer.return_value = Customer.model_validate(customer_payload())

        reconciler = PayoutReconciler(mock_client, processor, donation_sink)
        events = await reconciler.reconcile(_payout())

        mock_client.list_balance_transactions.assert_awaited_once_with("po_1")
        assert len(events) == 150
        assert donation_sink.charge_deposited.await_count == 150
        # The listed transaction is used, never re-fetched.
        mock_client.get_balance_transaction.assert_not_awaited()

    async def test_deposit_fields(self, processor, mock_client, donation_sink):
        mock_client.list_balance_transactions.return_value = [_charge_bt(1)]
        mock_client.get_customer.return_value = Customer.model_validate(customer_payload())

        [event] = await PayoutReconciler(mock_client, processor, donation_sink).reconcile(_payout())

        donation = event.crm_donation
        assert donation.deposit_id == "po_1"
        assert donation.deposit_date == datetime.fromtimestamp(ARRIVAL, tz=timezone.utc)
        assert donation.deposit_transaction_id == "txn_1"
        assert donation.transaction_id == "ch_1"
        assert donation.net_amount_in_dollars == 38.48

    async def test_non_charge_sources_skipped(self, processor, mock_client, donation_sink):
        adjustment = BalanceTransaction.model_validate(
            balance_transaction_payload(id="txn_adj", type="adjustment", source={"id": "adj_1", "object": "adjustment"})
        )
        unexpanded = BalanceTransaction.model_validate(balance_transaction_payload(id="txn_raw", source="ch_9"))
        mock_client.list_balance_transactions.return_value = [adjustment, _charge_bt(1), unexpanded]
        mock_client.get_customer.return_value = Customer.model_validate(customer_payload())

        events = await PayoutReconciler(mock_client, processor, donation_sink).reconcile(_payout())

        assert [e.crm_donation.transaction_id for e in events] == ["ch_1"]
        assert donation_sink.charge_deposited.await_count == 1

    async def test_charge_without_customer_skipped(self, processor, mock_client, donation_sink):
        mock_client.list_balance_transactions.return_value = [_charge_bt(1, customer=None)]

        events = await PayoutReconciler(mock_client, processor, donation_sink).reconcile(_payout())

        assert events == []
        donation_sink.charge_deposited.assert_not_awaited()

    async def test_intent_charge_enriched_as_payment_intent(self, processor, mock_client, donation_sink):
        mock_client.list_balance_transactions.return_value = [
            _charge_bt(1, payment_intent=payment_intent_payload(latest_charge=None))
        ]
        mock_client.get_payment_intent.return_value = PaymentIntent.model_validate(payment_intent_payload())
        mock_client.get_customer.return_value = Customer.model_validate(customer_payload())

        [event] = await PayoutReconciler(mock_client, processor, donation_sink).reconcile(_payout())

        mock_client.get_payment_intent.assert_awaited_once_with("pi_1")
        mock_client.get_balance_transaction.assert_not_awaited()
        assert event.crm_donation.transaction_id == "pi_1"
        assert event.crm_donation.deposit_transaction_id == "txn_1"
        assert event.crm_donation.deposit_id == "po_1"

    async def test_payout_paid_event_routes_to_reconciler(self, processor, mock_client, donation_sink):
        mock_client.list_balance_transactions.return_value = []
        event = GatewayEvent.model_validate(
            event_payload("payout.paid", {"id": "po_1", "object": "payout", "arrival_date": ARRIVAL})
        )

        await processor.handle(event)

        mock_client.list_balance_transactions.assert_awaited_once_with("po_1")
        donation_sink.charge_deposited.assert_not_awaited()
