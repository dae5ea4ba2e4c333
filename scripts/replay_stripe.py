#!/usr/bin/env python3
"""CLI script to replay Stripe charges or payouts through the donation sync.

Usage:
    uv run python scripts/replay_stripe.py charges --start 2024-01-01 --end 2024-01-31
    uv run python scripts/replay_stripe.py payouts --start 2024-01-01 --end 2024-01-31

Reads STRIPE_SECRET_KEY, CRM_SINK_URL and the other settings from environment
or .env file. Charges are replayed as charge.succeeded / payment_intent.succeeded
events, payouts as payout.paid events, directly through the processor.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import datetime, time, timezone

# Ensure project root is on sys.path so we can import src.donation_sync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def _parse_date(value: str, end_of_day: bool = False) -> datetime:
    day = datetime.strptime(value, "%Y-%m-%d").date()
    return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)


async def replay(kind: str, start: datetime, end: datetime) -> int:
    """Run the replay and return the number of failed objects."""
    from src.donation_sync.api.middleware.logging import configure_structlog
    from src.donation_sync.config import get_settings
    from src.donation_sync.paymentgateway.processor import StripeProcessor
    from src.donation_sync.paymentgateway.replay import StripeReplayer

    configure_structlog()
    processor = StripeProcessor.from_settings(get_settings())
    replayer = StripeReplayer(processor.client, processor)

    print(f"Replaying {kind} from {start.date()} to {end.date()}")
    if kind == "charges":
        summary = await replayer.replay_charges(start, end)
    else:
        summary = await replayer.replay_payouts(start, end)

    print(f"  Considered: {summary.considered}")
    print(f"  Replayed:   {summary.replayed}")
    print(f"  Skipped:    {summary.skipped}")
    print(f"  Failed:     {summary.failed}")
    return summary.failed


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay Stripe activity through the donation sync")
    parser.add_argument("kind", choices=["charges", "payouts"], help="What to replay")
    parser.add_argument("--start", required=True, help="First day, YYYY-MM-DD (UTC)")
    parser.add_argument("--end", required=True, help="Last day, YYYY-MM-DD (UTC, inclusive)")
    args = parser.parse_args()

    start = _parse_date(args.start)
    end = _parse_date(args.end, end_of_day=True)
    if end < start:
        parser.error("--end must not be before --start")

    failed = asyncio.run(replay(args.kind, start, end))
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
