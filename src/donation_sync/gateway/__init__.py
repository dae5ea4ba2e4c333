"""Stripe integration layer -- typed API objects and the read-only REST client.

- schemas: pydantic models for Stripe objects, tagged on ``object``
- client: StripeClient (httpx + tenacity) issuing the secondary lookups
"""

from src.donation_sync.gateway.client import GatewayObjectNotFound, StripeClient
from src.donation_sync.gateway.schemas import GatewayEvent

__all__ = ["GatewayEvent", "GatewayObjectNotFound", "StripeClient"]
