"""Rules deciding what a ``customer.subscription.created`` event may create.

A live subscription's first charge fires its own webhook at nearly the same
moment as the subscription event, and the charge path already creates the
recurring donation. Creating it here too would duplicate it, so this path
only creates during a trial, when the first real charge is still in the
future.
"""

from __future__ import annotations

from enum import Enum

from src.donation_sync.gateway.schemas import Subscription
from src.donation_sync.paymentgateway.metadata import freeze_metadata

AUTO_MIGRATED_KEY = "auto-migrated"
TRIALING = "trialing"


class SubscriptionDecision(str, Enum):
    SKIP_MIGRATED = "skip_migrated"
    CREATE = "create"
    DEFER = "defer"


def evaluate_subscription_created(subscription: Subscription) -> SubscriptionDecision:
    """Decide whether to create the recurring donation now.

    1. Auto-migrated subscriptions (metadata ``auto-migrated`` equal to "true",
       any case) already have a recurring donation: skip.
    2. Trialing subscriptions: create now.
    3. Anything else: defer to the first successful charge.
    """
    flag = freeze_metadata(subscription.metadata).get(AUTO_MIGRATED_KEY)
    if flag is not None and flag.lower() == "true":
        return SubscriptionDecision.SKIP_MIGRATED
    if (subscription.status or "").lower() == TRIALING:
        return SubscriptionDecision.CREATE
    return SubscriptionDecision.DEFER
