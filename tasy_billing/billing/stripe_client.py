"""Async Stripe API wrapper for Tasy billing."""

import logging
from typing import Any

import stripe
from stripe import StripeClient

from tasy_billing.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        stripe_version=settings.stripe_api_version,
        http_client=stripe.HTTPXClient(),
    )


async def create_customer(email: str, user_id: str) -> stripe.Customer:
    """Create a Stripe customer linked to a Tasy profile."""
    client = get_stripe_client()
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    customer = await client.v1.customers.create_async(
        params={
            "email": email,
            "metadata": {"user_id": user_id},
        }
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def create_checkout_session(params: dict[str, Any]) -> stripe.checkout.Session:
    """Create a Stripe Checkout Session from fully-built params."""
    client = get_stripe_client()
    logger.info(
        "Creating %s checkout session for customer %s",
        params.get("ui_mode", "hosted"),
        params.get("customer"),
    )
    return await client.v1.checkout.sessions.create_async(params=params)  # type: ignore[arg-type]


async def create_portal_session(
    customer_id: str, return_url: str
) -> stripe.billing_portal.Session:
    """Create a Stripe Customer Portal session for subscription management."""
    client = get_stripe_client()
    logger.info("Creating portal session for customer %s", customer_id)
    return await client.v1.billing_portal.sessions.create_async(
        params={
            "customer": customer_id,
            "return_url": return_url,
        }
    )


async def get_subscription(subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    client = get_stripe_client()
    return await client.v1.subscriptions.retrieve_async(subscription_id)


def construct_webhook_event(payload: bytes, sig_header: str, secret: str) -> stripe.Event:
    """Verify the signature header and construct the event (synchronous).

    Raises:
        stripe.SignatureVerificationError: If the signature does not match.
        ValueError: If the payload is not valid JSON.
    """
    return stripe.Webhook.construct_event(payload, sig_header, secret)
