"""Stripe webhook signature verification.

Delegates to the stripe SDK's WebhookSignature, which checks the
``Stripe-Signature`` header (``t=<timestamp>,v1=<hmac>``) against an
HMAC-SHA256 of ``"{t}.{payload}"`` and rejects timestamps outside the
tolerance window.
"""

from __future__ import annotations

import stripe

SIGNATURE_HEADER = "Stripe-Signature"


class InvalidSignature(Exception):
    """Raised when a webhook payload fails signature verification."""


def verify_signature(payload: bytes, header: str | None, secret: str, tolerance: int = 300) -> None:
    """Verify ``payload`` against its ``Stripe-Signature`` header.

    Verification is skipped when no secret is configured.

    Args:
        payload: Raw request body, exactly as received.
        header: Value of the Stripe-Signature header, if any.
        secret: Endpoint signing secret (``whsec_...``).
        tolerance: Maximum age of the signed timestamp, in seconds.

    Raises:
        InvalidSignature: Header missing, malformed, stale, or not matching.
    """
    if not secret:
        return
    if not header:
        raise InvalidSignature(f"Missing {SIGNATURE_HEADER} header")
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), header, secret, tolerance)
    except UnicodeDecodeError as exc:
        raise InvalidSignature("Payload is not valid UTF-8") from exc
    except stripe.SignatureVerificationError as exc:
        raise InvalidSignature(str(exc)) from exc
