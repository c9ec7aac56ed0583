"""Stripe webhook endpoint — receives and processes Stripe events."""

import logging

import stripe
from fastapi import APIRouter, HTTPException, Request, status

from tasy_billing.billing.events import UnhandledEvent, parse_event
from tasy_billing.billing.stripe_client import construct_webhook_event
from tasy_billing.billing.webhooks import (
    handle_checkout_session_completed,
    handle_invoice_payment_failed,
    handle_invoice_payment_succeeded,
    handle_subscription_created,
    handle_subscription_deleted,
    handle_subscription_updated,
    resolve_event_customer_id,
)
from tasy_billing.config import settings
from tasy_billing.database import async_session_factory
from tasy_billing.schemas.billing import WebhookResponse
from tasy_billing.services.webhook_log_service import record_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

# Map event types to handler functions
EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


@router.post("/stripe", response_model=WebhookResponse)
async def stripe_webhook(request: Request) -> WebhookResponse:
    """Receive and process Stripe webhook events.

    Every verified event is acknowledged with 200, even when its handler
    fails: the failure is logged and Stripe does not retry it.
    """
    # 1. Signature header and secret must be present
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.warning("Missing stripe-signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing stripe-signature header",
        )

    webhook_secret = settings.webhook_secret
    if not webhook_secret:
        logger.error("Webhook secret not configured")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook secret not configured",
        )

    # 2. Read raw body (MUST be raw bytes for signature verification) and verify
    payload = await request.body()
    try:
        construct_webhook_event(payload, sig_header, webhook_secret)
        event = parse_event(payload)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)

    try:
        # 3. Advisory audit row, written in its own session
        customer_id = await resolve_event_customer_id(event)
        await record_webhook_event(async_session_factory, event.id, event.type, customer_id)

        # 4. Dispatch to handler
        handler = None if isinstance(event, UnhandledEvent) else EVENT_HANDLERS.get(event.type)
        if handler is None:
            logger.info("No handler for webhook event %s (type=%s)", event.id, event.type)
            return WebhookResponse(received=True, event_id=event.id)

        async with async_session_factory() as db:
            try:
                await handler(db, event)
                await db.commit()
            except Exception:
                await db.rollback()
                logger.exception(
                    "Error processing webhook event %s (type=%s)", event.id, event.type
                )
    except Exception as e:
        logger.exception("Fatal error handling webhook event %s", event.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed",
        ) from e

    return WebhookResponse(received=True, event_id=event.id)
