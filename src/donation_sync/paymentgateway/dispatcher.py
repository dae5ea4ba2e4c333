"""WebhookDispatcher -- verify, decode, and schedule inbound webhooks.

The HTTP path only verifies the signature, decodes the envelope and enqueues
it on the KeyedWorkerPool; enrichment and sink calls happen on a worker.
Events are keyed by donor (see ordering_key) so that everything about one
customer is processed strictly in arrival order.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from src.donation_sync.core.monitoring import (
    webhook_events_processed_total,
    webhook_events_received_total,
    webhook_processing_duration_seconds,
)
from src.donation_sync.gateway.schemas import (
    Charge,
    GatewayEvent,
    Invoice,
    PaymentIntent,
    Payout,
    Refund,
    Subscription,
)
from src.donation_sync.paymentgateway.processor import EVENT_OBJECT_TYPES, StripeProcessor
from src.donation_sync.paymentgateway.signature import verify_signature
from src.donation_sync.paymentgateway.workers import KeyedWorkerPool

logger = structlog.get_logger(__name__)

# Charge/intent refs remembered for routing later refunds.
MAX_KEY_ALIASES = 10_000


class WebhookDecodeError(Exception):
    """Raised when a webhook body cannot be decoded into a known event shape."""


def decode_event(payload: bytes) -> GatewayEvent:
    """Decode a raw webhook body into a GatewayEvent.

    For event types the processor handles, the object must also be one of
    the types that event carries (e.g. a ``charge.succeeded`` holding a
    Subscription is rejected).

    Raises:
        WebhookDecodeError: Invalid JSON, missing fields, or mismatched object.
    """
    try:
        event = GatewayEvent.model_validate_json(payload)
    except ValidationError as exc:
        raise WebhookDecodeError(str(exc)) from exc

    expected = EVENT_OBJECT_TYPES.get(event.type)
    if expected is not None and event.object.object not in expected:
        raise WebhookDecodeError(
            f"{event.type} carries a {event.object.object!r} object, expected one of {expected}"
        )
    return event


def object_references(obj: Any) -> list[str]:
    """Charge and intent ids an object refers to, as ``charge:``/``payment_intent:`` refs."""
    refs: list[str] = []
    if isinstance(obj, Charge):
        refs.append(f"charge:{obj.id}")
        if obj.payment_intent_id:
            refs.append(f"payment_intent:{obj.payment_intent_id}")
    elif isinstance(obj, PaymentIntent):
        refs.append(f"payment_intent:{obj.id}")
        refs.extend(f"charge:{charge.id}" for charge in obj.charge_list())
        if isinstance(obj.latest_charge, str):
            refs.append(f"charge:{obj.latest_charge}")
    elif isinstance(obj, Refund):
        if obj.charge:
            refs.append(f"charge:{obj.charge}")
        if obj.payment_intent:
            refs.append(f"payment_intent:{obj.payment_intent}")
    return refs


def ordering_key(event: GatewayEvent, aliases: Mapping[str, str] | None = None) -> str:
    """Key that serializes every event about one donor.

    Customer id first, so a subscription and its first charge share a key.
    Objects without a customer (a bare Refund) are resolved through
    ``aliases``, which maps charge and intent refs to the key their parent
    was dispatched under. Otherwise the subscription, payout, first ref or
    event id is used.
    """
    obj = event.object
    customer_id = getattr(obj, "customer_id", None)
    if customer_id:
        return f"customer:{customer_id}"
    refs = object_references(obj)
    if aliases:
        for ref in refs:
            if ref in aliases:
                return aliases[ref]
    if isinstance(obj, Subscription):
        return f"subscription:{obj.id}"
    if isinstance(obj, Invoice) and obj.subscription_id:
        return f"subscription:{obj.subscription_id}"
    if isinstance(obj, Payout):
        return f"payout:{obj.id}"
    if refs:
        return refs[0]
    return f"event:{event.id}"


class WebhookDispatcher:
    """Entry point shared by the HTTP route and the replay tooling.

    Args:
        processor: Handles decoded events.
        pool: Worker pool events are scheduled on.
        webhook_secret: Stripe endpoint secret; signatures are not checked when empty.
        tolerance: Signature timestamp tolerance, in seconds.
    """

    def __init__(
        self,
        processor: StripeProcessor,
        pool: KeyedWorkerPool,
        webhook_secret: str = "",
        tolerance: int = 300,
    ) -> None:
        self._processor = processor
        self._pool = pool
        self._webhook_secret = webhook_secret
        self._tolerance = tolerance
        self._aliases: OrderedDict[str, str] = OrderedDict()

    def dispatch(self, payload: bytes, signature: str | None = None) -> GatewayEvent:
        """Verify, decode and enqueue one webhook.

        Raises:
            InvalidSignature: Signature check failed.
            WebhookDecodeError: Body is not a decodable event.
            asyncio.QueueFull: The owning worker's queue is full.
        """
        verify_signature(payload, signature, self._webhook_secret, self._tolerance)
        event = decode_event(payload)
        key = ordering_key(event, self._aliases)
        self._remember(event, key)
        self._pool.submit(key, lambda: self.process(event))
        webhook_events_received_total.labels(event_type=event.type).inc()
        logger.info("webhook.event_received", event_id=event.id, event_type=event.type, key=key)
        return event

    async def process(self, event: GatewayEvent) -> None:
        """Run one event through the processor, isolating any failure."""
        structlog.contextvars.bind_contextvars(event_id=event.id, event_type=event.type)
        start_time = time.perf_counter()
        outcome = "success"
        try:
            await self._processor.handle(event)
        except Exception as exc:
            outcome = "error"
            logger.error("webhook.event_failed", error=str(exc), exc_info=True)
        finally:
            webhook_processing_duration_seconds.labels(event_type=event.type).observe(
                time.perf_counter() - start_time
            )
            webhook_events_processed_total.labels(event_type=event.type, outcome=outcome).inc()
            structlog.contextvars.unbind_contextvars("event_id", "event_type")

    def _remember(self, event: GatewayEvent, key: str) -> None:
        for ref in object_references(event.object):
            self._aliases[ref] = key
            self._aliases.move_to_end(ref)
        while len(self._aliases) > MAX_KEY_ALIASES:
            self._aliases.popitem(last=False)
