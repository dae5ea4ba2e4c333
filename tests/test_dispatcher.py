"""Unit tests for webhook signature verification and WebhookDispatcher.

Tests cover:
- Stripe-Signature verification (valid, tampered, stale, missing, disabled)
- Envelope decoding into tagged gateway objects
- Rejection of malformed bodies and mismatched object types
- Ordering keys
- dispatch(): verify, decode, enqueue under the ordering key
- process(): failures isolated and counted
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.donation_sync.core.monitoring import (
    webhook_events_processed_total,
    webhook_events_received_total,
)
from src.donation_sync.gateway.schemas import (
    Charge,
    GatewayEvent,
    PaymentIntent,
    Refund,
    Subscription,
    UnknownObject,
)
from src.donation_sync.paymentgateway.dispatcher import (
    WebhookDecodeError,
    WebhookDispatcher,
    decode_event,
    object_references,
    ordering_key,
)
from src.donation_sync.paymentgateway.processor import StripeProcessor
from src.donation_sync.paymentgateway.signature import InvalidSignature, verify_signature
from src.donation_sync.paymentgateway.workers import KeyedWorkerPool
from tests.payloads import (
    charge_payload,
    event_body,
    event_payload,
    payment_intent_payload,
    subscription_payload,
)

SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    mac = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


# ── Signature ────────────────────────────────────────────────────────────────


class TestSignature:
    def test_valid_signature(self):
        body = event_body("charge.succeeded", charge_payload())
        verify_signature(body, _sign(body), SECRET)

    def test_tampered_payload(self):
        body = event_body("charge.succeeded", charge_payload())
        header = _sign(body)
        with pytest.raises(InvalidSignature):
            verify_signature(body.replace(b"4200", b"1"), header, SECRET)

    def test_wrong_secret(self):
        body = event_body("charge.succeeded", charge_payload())
        with pytest.raises(InvalidSignature):
            verify_signature(body, _sign(body, secret="whsec_other"), SECRET)

    def test_stale_timestamp(self):
        body = event_body("charge.succeeded", charge_payload())
        header = _sign(body, timestamp=int(time.time()) - 3600)
        with pytest.raises(InvalidSignature):
            verify_signature(body, header, SECRET, tolerance=300)

    def test_missing_header(self):
        with pytest.raises(InvalidSignature):
            verify_signature(b"{}", None, SECRET)

    def test_disabled_without_secret(self):
        verify_signature(b"not even json", None, "")


# ── Decoding ─────────────────────────────────────────────────────────────────


class TestDecodeEvent:
    def test_charge_event(self):
        event = decode_event(event_body("charge.succeeded", charge_payload()))
        assert isinstance(event.object, Charge)
        assert event.id == "evt_1"

    def test_payment_intent_event(self):
        event = decode_event(event_body("payment_intent.succeeded", payment_intent_payload()))
        assert isinstance(event.object, PaymentIntent)
        assert event.object.charge_list()[0].id == "ch_1"

    def test_refund_event(self):
        refund = {"id": "re_1", "object": "refund", "charge": "ch_1"}
        event = decode_event(event_body("charge.refunded", refund))
        assert isinstance(event.object, Refund)

    def test_unknown_object_type_kept(self):
        body = event_body("product.created", {"id": "prod_1", "object": "product", "name": "Gala"})
        event = decode_event(body)
        assert isinstance(event.object, UnknownObject)
        assert event.object.object == "product"

    def test_invalid_json(self):
        with pytest.raises(WebhookDecodeError):
            decode_event(b"{not json")

    def test_missing_data(self):
        with pytest.raises(WebhookDecodeError):
            decode_event(json.dumps({"id": "evt_1", "type": "charge.succeeded"}).encode())

    def test_object_shape_mismatch(self):
        payload = charge_payload()
        del payload["amount"]
        with pytest.raises(WebhookDecodeError):
            decode_event(event_body("charge.succeeded", payload))

    def test_object_type_mismatch(self):
        with pytest.raises(WebhookDecodeError):
            decode_event(event_body("charge.succeeded", subscription_payload()))


# ── Ordering keys ────────────────────────────────────────────────────────────


class TestOrderingKey:
    def _event(self, event_type: str, obj: dict) -> GatewayEvent:
        return GatewayEvent.model_validate(event_payload(event_type, obj, event_id="evt_9"))

    def test_subscription_keyed_by_customer(self):
        event = self._event("customer.subscription.created", subscription_payload())
        assert isinstance(event.object, Subscription)
        assert ordering_key(event) == "customer:cus_1"

    def test_subscription_and_first_intent_share_worker(self):
        subscription = self._event("customer.subscription.created", subscription_payload())
        intent = self._event("payment_intent.succeeded", payment_intent_payload())
        pool = KeyedWorkerPool(worker_count=8)

        assert ordering_key(subscription) == ordering_key(intent)
        assert pool.worker_for(ordering_key(subscription)) == pool.worker_for(ordering_key(intent))

    def test_subscription_without_customer(self):
        event = self._event("customer.subscription.deleted", subscription_payload(customer=None))
        assert ordering_key(event) == "subscription:sub_1"

    def test_customer(self):
        assert ordering_key(self._event("charge.succeeded", charge_payload())) == "customer:cus_1"

    def test_expanded_customer(self):
        charge = charge_payload(customer={"id": "cus_x", "object": "customer"})
        assert ordering_key(self._event("charge.succeeded", charge)) == "customer:cus_x"

    def test_payout(self):
        payout = {"id": "po_1", "object": "payout", "arrival_date": 1}
        assert ordering_key(self._event("payout.paid", payout)) == "payout:po_1"

    def test_refund_resolved_through_charge_alias(self):
        refund = self._event("charge.refunded", {"id": "re_1", "object": "refund", "charge": "ch_1"})
        assert ordering_key(refund, {"charge:ch_1": "customer:cus_1"}) == "customer:cus_1"

    def test_refund_resolved_through_intent_alias(self):
        refund = {"id": "re_1", "object": "refund", "charge": "ch_2", "payment_intent": "pi_1"}
        aliases = {"payment_intent:pi_1": "customer:cus_1"}
        assert ordering_key(self._event("charge.refunded", refund), aliases) == "customer:cus_1"

    def test_unseen_refund_keyed_by_charge(self):
        refund = self._event("charge.refunded", {"id": "re_1", "object": "refund", "charge": "ch_1"})
        assert ordering_key(refund) == "charge:ch_1"

    def test_event_id_fallback(self):
        event = self._event("charge.refunded", {"id": "re_1", "object": "refund"})
        assert ordering_key(event) == "event:evt_9"

    def test_object_references(self):
        charge = Charge.model_validate(charge_payload(payment_intent="pi_1"))
        assert object_references(charge) == ["charge:ch_1", "payment_intent:pi_1"]
        intent = PaymentIntent.model_validate(payment_intent_payload(latest_charge="ch_7"))
        assert object_references(intent) == ["payment_intent:pi_1", "charge:ch_7"]
        assert object_references(Subscription.model_validate(subscription_payload())) == []


# ── Dispatcher ───────────────────────────────────────────────────────────────


@pytest.fixture
def mock_processor():
    return AsyncMock(spec=StripeProcessor)


@pytest.fixture
def mock_pool():
    return MagicMock(spec=KeyedWorkerPool)


class TestWebhookDispatcher:
    async def test_dispatch_enqueues_under_key(self, mock_processor, mock_pool):
        dispatcher = WebhookDispatcher(mock_processor, mock_pool)
        received = webhook_events_received_total.labels(event_type="charge.succeeded")._value.get()

        event = dispatcher.dispatch(event_body("charge.succeeded", charge_payload()))

        mock_pool.submit.assert_called_once()
        key, job = mock_pool.submit.call_args.args
        assert key == "customer:cus_1"
        mock_processor.handle.assert_not_awaited()
        assert (
            webhook_events_received_total.labels(event_type="charge.succeeded")._value.get()
            == received + 1
        )

        await job()
        mock_processor.handle.assert_awaited_once_with(event)

    def test_bare_refund_follows_its_charge(self, mock_processor, mock_pool):
        dispatcher = WebhookDispatcher(mock_processor, mock_pool)
        dispatcher.dispatch(event_body("charge.succeeded", charge_payload(payment_intent="pi_1")))
        refund = {"id": "re_1", "object": "refund", "charge": "ch_1", "payment_intent": "pi_1"}
        dispatcher.dispatch(event_body("charge.refunded", refund, event_id="evt_2"))

        keys = [call.args[0] for call in mock_pool.submit.call_args_list]
        assert keys == ["customer:cus_1", "customer:cus_1"]

    def test_refund_follows_intent_charge(self, mock_processor, mock_pool):
        dispatcher = WebhookDispatcher(mock_processor, mock_pool)
        dispatcher.dispatch(event_body("payment_intent.succeeded", payment_intent_payload()))
        refund = {"id": "re_1", "object": "refund", "charge": "ch_1"}
        dispatcher.dispatch(event_body("charge.refunded", refund, event_id="evt_2"))

        assert mock_pool.submit.call_args.args[0] == "customer:cus_1"

    def test_aliases_bounded(self, mock_processor, mock_pool, monkeypatch):
        monkeypatch.setattr("src.donation_sync.paymentgateway.dispatcher.MAX_KEY_ALIASES", 3)
        dispatcher = WebhookDispatcher(mock_processor, mock_pool)
        for n in range(4):
            dispatcher.dispatch(event_body("charge.succeeded", charge_payload(id=f"ch_{n}")))

        assert list(dispatcher._aliases) == ["charge:ch_1", "charge:ch_2", "charge:ch_3"]

    def test_dispatch_checks_signature_when_configured(self, mock_processor, mock_pool):
        dispatcher = WebhookDispatcher(mock_processor, mock_pool, webhook_secret=SECRET)
        body = event_body("charge.succeeded", charge_payload())

        with pytest.raises(InvalidSignature):
            dispatcher.dispatch(body, "t=1,v1=deadbeef")
        mock_pool.submit.assert_not_called()

        dispatcher.dispatch(body, _sign(body))
        mock_pool.submit.assert_called_once()

    def test_decode_failure_schedules_nothing(self, mock_processor, mock_pool):
        dispatcher = WebhookDispatcher(mock_processor, mock_pool)
        with pytest.raises(WebhookDecodeError):
            dispatcher.dispatch(b"[]")
        mock_pool.submit.assert_not_called()

    async def test_process_failure_isolated(self, mock_processor, mock_pool):
        mock_processor.handle.side_effect = RuntimeError("CRM unavailable")
        dispatcher = WebhookDispatcher(mock_processor, mock_pool)
        event = decode_event(event_body("charge.failed", charge_payload(status="failed")))
        errors = webhook_events_processed_total.labels(
            event_type="charge.failed", outcome="error"
        )._value.get()

        await dispatcher.process(event)

        assert (
            webhook_events_processed_total.labels(event_type="charge.failed", outcome="error")._value.get()
            == errors + 1
        )

    async def test_process_success_counted(self, mock_processor, mock_pool):
        dispatcher = WebhookDispatcher(mock_processor, mock_pool)
        event = decode_event(event_body("payout.paid", {"id": "po_1", "object": "payout", "arrival_date": 1}))
        successes = webhook_events_processed_total.labels(
            event_type="payout.paid", outcome="success"
        )._value.get()

        await dispatcher.process(event)

        mock_processor.handle.assert_awaited_once_with(event)
        assert (
            webhook_events_processed_total.labels(event_type="payout.paid", outcome="success")._value.get()
            == successes + 1
        )
