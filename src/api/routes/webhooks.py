"""Webhook API routes for payment provider integrations."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, status

from src.services.webhook_service import WebhookService, get_webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/payment",
    status_code=status.HTTP_200_OK,
    summary="Handle payment webhooks",
    description="Receives Stripe payment events. Requires a valid Stripe-Signature header.",
)
@router.post("/stripe", status_code=status.HTTP_200_OK, include_in_schema=False)
async def payment_webhook(
    request: Request,
    webhook_service: WebhookService = Depends(get_webhook_service),
) -> dict[str, Any]:
    """Handle Stripe webhook events.

    The raw body is verified against the Stripe signature before anything
    is parsed. Successful payments mark the order paid once, then decrement
    inventory and send the confirmation email once each.

    Responses tell Stripe whether to redeliver:
    - 200: handled, including duplicates and ignored event types
    - 400: bad signature, malformed payload or uncorrelatable event
    - 503: the order is not visible yet
    - 500: a downstream effect failed

    Args:
        request: FastAPI request object for reading raw body and headers.
        webhook_service: Webhook reconciliation service.

    Returns:
        dict: Acknowledgment with the reconciliation outcome.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    logger.debug("Webhook payload size: %d bytes", len(payload))

    result = await webhook_service.handle_provider_event(payload, sig_header)

    return {
        "status": "received",
        "result": result.status,
        "event_type": result.event_type,
        "order_number": result.order_number,
        "effects": result.effects,
    }
