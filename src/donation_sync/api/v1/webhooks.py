"""Stripe webhook receiver.

POST /webhook (and /stripe/webhook) takes the raw Stripe envelope, hands it
to the WebhookDispatcher and acknowledges as soon as the event is queued.

Responses:
- 200, empty body: decoded and scheduled
- 400: signature check failed (only when a webhook secret is configured)
- 500: body could not be decoded into a known event shape
- 503: worker queue full or dispatcher not initialized (Stripe retries later)
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Request, Response, status

from src.donation_sync.paymentgateway.dispatcher import WebhookDecodeError, WebhookDispatcher
from src.donation_sync.paymentgateway.signature import SIGNATURE_HEADER, InvalidSignature

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["webhooks"])


def _get_dispatcher(request: Request) -> WebhookDispatcher | None:
    return getattr(request.app.state, "webhook_dispatcher", None)


@router.post("/webhook")
@router.post("/stripe/webhook")
async def receive_webhook(request: Request) -> Response:
    """Verify, decode and enqueue a Stripe event."""
    dispatcher = _get_dispatcher(request)
    if dispatcher is None:
        logger.error("webhook.dispatcher_unavailable")
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    payload = await request.body()
    try:
        dispatcher.dispatch(payload, request.headers.get(SIGNATURE_HEADER))
    except InvalidSignature as exc:
        logger.warning("webhook.invalid_signature", error=str(exc))
        return Response(status_code=status.HTTP_400_BAD_REQUEST)
    except WebhookDecodeError as exc:
        logger.error("webhook.decode_failed", error=str(exc))
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    except asyncio.QueueFull:
        logger.error("webhook.queue_full")
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    return Response(status_code=status.HTTP_200_OK)
