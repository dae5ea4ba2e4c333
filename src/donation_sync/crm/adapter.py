"""Downstream sink abstract base classes -- the CRM-facing side of the sync.

The processor never talks to a CRM directly. It hands each fully normalized
PaymentGatewayEvent to two sinks:

- DonorSink: account/contact upsert, keyed by the resolved identity.
- DonationSink: donation create/refund/deposit and recurring-donation
  create/close.

Sinks return nothing. Ids a CRM assigns are threaded back onto the event
through its ``set_crm_*_id`` methods so later calls in the same event see them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.donation_sync.paymentgateway.event import PaymentGatewayEvent


class DonorSink(ABC):
    """Account/contact upsert interface."""

    @abstractmethod
    async def process_account(self, event: PaymentGatewayEvent) -> None:
        """Upsert the event's account and contact, recording the assigned ids."""
        ...


class DonationSink(ABC):
    """Donation and recurring-donation interface.

    Methods:
        create_donation: Record a successful or failed transaction.
        refund_donation: Mark the donation identified by transaction id as refunded.
        process_subscription: Create the recurring donation for a subscription.
        close_recurring_donation: Close the recurring donation for a cancelled subscription.
        charge_deposited: Record the payout a donation was deposited in.
    """

    @abstractmethod
    async def create_donation(self, event: PaymentGatewayEvent) -> None:
        ...

    @abstractmethod
    async def refund_donation(self, event: PaymentGatewayEvent) -> None:
        ...

    @abstractmethod
    async def process_subscription(self, event: PaymentGatewayEvent) -> None:
        ...

    @abstractmethod
    async def close_recurring_donation(self, event: PaymentGatewayEvent) -> None:
        ...

    @abstractmethod
    async def charge_deposited(self, event: PaymentGatewayEvent) -> None:
        ...
