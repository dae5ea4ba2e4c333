"""Replay historical Stripe activity through the processor.

Used to backfill after an outage or a misconfigured sink: succeeded charges
in a date range are re-run as the webhook that should have created them
(``charge.succeeded`` for plain charges, ``payment_intent.succeeded`` for
intent-based ones), and paid payouts as ``payout.paid``. Replays run in the
caller's task, one object at a time; a failure on one object is logged and
the replay moves on.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from src.donation_sync.gateway.client import StripeClient
from src.donation_sync.gateway.schemas import Charge, EventData, GatewayEvent
from src.donation_sync.paymentgateway.processor import StripeProcessor

logger = structlog.get_logger(__name__)

# Returns True when a donation with this transaction id already exists downstream.
RecordedCheck = Callable[[str], Awaitable[bool]]


@dataclass
class ReplaySummary:
    considered: int = 0
    replayed: int = 0
    skipped: int = 0
    failed: int = 0


def _replay_event(event_type: str, source_id: str, obj: object) -> GatewayEvent:
    return GatewayEvent(
        id=f"replay_{source_id}",
        type=event_type,
        data=EventData(object=obj),
    )


class StripeReplayer:
    """Re-runs charges and payouts from a date range through StripeProcessor.

    Args:
        client: Stripe client used to list charges and payouts.
        processor: Processor the synthesized events are handed to.
        is_recorded: Optional check used to skip transactions already
            present downstream; without it every succeeded charge is replayed.
    """

    def __init__(
        self,
        client: StripeClient,
        processor: StripeProcessor,
        is_recorded: RecordedCheck | None = None,
    ) -> None:
        self._client = client
        self._processor = processor
        self._is_recorded = is_recorded

    async def replay_charges(self, start: datetime, end: datetime) -> ReplaySummary:
        summary = ReplaySummary()
        for charge in await self._client.list_charges(start, end):
            if not self._succeeded(charge):
                continue
            summary.considered += 1
            try:
                if await self._already_recorded(charge):
                    summary.skipped += 1
                    continue
                await self._processor.handle(await self._event_for(charge))
                summary.replayed += 1
            except Exception as exc:
                summary.failed += 1
                logger.error("replay.charge_failed", charge_id=charge.id, error=str(exc), exc_info=True)

        logger.info("replay.charges_complete", start=start.isoformat(), end=end.isoformat(), **vars(summary))
        return summary

    async def replay_payouts(self, start: datetime, end: datetime) -> ReplaySummary:
        summary = ReplaySummary()
        for payout in await self._client.list_payouts(start, end):
            if payout.status and payout.status != "paid":
                continue
            summary.considered += 1
            try:
                await self._processor.handle(_replay_event("payout.paid", payout.id, payout))
                summary.replayed += 1
            except Exception as exc:
                summary.failed += 1
                logger.error("replay.payout_failed", payout_id=payout.id, error=str(exc), exc_info=True)

        logger.info("replay.payouts_complete", start=start.isoformat(), end=end.isoformat(), **vars(summary))
        return summary

    @staticmethod
    def _succeeded(charge: Charge) -> bool:
        if (charge.status or "").lower() != "succeeded":
            return False
        intent = charge.payment_intent_object
        return intent is None or (intent.status or "").lower() == "succeeded"

    async def _already_recorded(self, charge: Charge) -> bool:
        if self._is_recorded is None:
            return False
        if charge.payment_intent_id and await self._is_recorded(charge.payment_intent_id):
            return True
        return await self._is_recorded(charge.id)

    async def _event_for(self, charge: Charge) -> GatewayEvent:
        if not charge.payment_intent_id:
            return _replay_event("charge.succeeded", charge.id, charge)
        intent = charge.payment_intent_object
        if intent is None:
            intent = await self._client.get_payment_intent(charge.payment_intent_id)
        return _replay_event("payment_intent.succeeded", intent.id, intent)
