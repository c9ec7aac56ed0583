"""Stripe webhook event handlers — reconcile subscriptions and credits."""

import logging

import stripe
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tasy_billing.billing.events import (
    CheckoutSessionCompletedEvent,
    InvoicePaymentFailedEvent,
    InvoicePaymentSucceededEvent,
    StripeEvent,
    StripeSubscription,
    SubscriptionCreatedEvent,
    SubscriptionDeletedEvent,
    SubscriptionUpdatedEvent,
    UnhandledEvent,
)
from tasy_billing.billing.exceptions import UnknownPriceError
from tasy_billing.billing.plans import get_plan_by_price_id
from tasy_billing.billing.stripe_client import get_subscription
from tasy_billing.models.subscription import PRODUCT_TAG
from tasy_billing.services.credit_service import allocate_credits
from tasy_billing.services.subscription_service import (
    link_profile_subscription,
    resolve_profile,
    set_subscription_status,
    upsert_subscription,
)

logger = logging.getLogger(__name__)


async def fetch_subscription(subscription_id: str) -> StripeSubscription:
    """Retrieve a live subscription from Stripe as a typed payload.

    Raises:
        stripe.StripeError: If the retrieval fails.
        pydantic.ValidationError: If the response lacks a required field.
    """
    stripe_sub = await get_subscription(subscription_id)
    # SDK objects are not dicts; validate their plain-dict form
    return StripeSubscription.model_validate(stripe_sub.to_dict())


async def resolve_event_customer_id(event: StripeEvent | UnhandledEvent) -> str | None:
    """Customer ID for the audit log: from the payload, else via its subscription."""
    if event.customer_id:
        return event.customer_id

    subscription_id = event.subscription_ref
    if not subscription_id:
        return None
    try:
        return (await fetch_subscription(subscription_id)).customer
    except (stripe.StripeError, ValidationError) as e:
        logger.warning("Could not get customer from subscription %s: %s", subscription_id, e)
        return None


async def reconcile_subscription(
    db: AsyncSession, stripe_sub: StripeSubscription, is_new: bool
) -> None:
    """Mirror a tasy-viral subscription locally and top up the owner's credits.

    ``is_new`` only affects logging; whether a row is inserted or updated
    depends on the Stripe subscription ID already being stored.

    Raises:
        UnknownPriceError: If the price is not in the price table.
        UserResolutionError: If no profile owns the subscription.
    """
    logger.info(
        "Processing subscription %s (customer %s, status=%s, new=%s)",
        stripe_sub.id,
        stripe_sub.customer,
        stripe_sub.status,
        is_new,
    )

    if stripe_sub.metadata.get("product") != PRODUCT_TAG:
        logger.info("Subscription %s is not a %s subscription, skipping", stripe_sub.id, PRODUCT_TAG)
        return

    profile = await resolve_profile(db, stripe_sub)
    # A customer-id backfill survives a failed price lookup below
    await db.commit()

    price_id = stripe_sub.price_id
    plan_info = get_plan_by_price_id(price_id) if price_id else None
    if plan_info is None:
        logger.error("Unknown price ID %s in subscription %s", price_id, stripe_sub.id)
        raise UnknownPriceError(price_id)
    plan, billing_interval = plan_info

    subscription = await upsert_subscription(
        db,
        profile=profile,
        stripe_sub=stripe_sub,
        plan=plan,
        billing_interval=billing_interval,
        price_id=price_id,
    )
    await link_profile_subscription(db, profile, subscription)
    await allocate_credits(db, profile.id, plan, stripe_sub.status, stripe_sub)


async def handle_checkout_session_completed(
    db: AsyncSession, event: CheckoutSessionCompletedEvent
) -> None:
    """Handle checkout.session.completed — nothing to store.

    The subscription itself arrives through customer.subscription.created.
    """
    session = event.data.object
    if session.mode == "subscription" and session.subscription:
        logger.info(
            "Checkout %s completed for subscription %s; awaiting subscription event",
            session.id,
            session.subscription,
        )
    else:
        logger.info("Checkout %s is not a subscription checkout (mode=%s)", session.id, session.mode)


async def handle_subscription_created(db: AsyncSession, event: SubscriptionCreatedEvent) -> None:
    """Handle customer.subscription.created."""
    await reconcile_subscription(db, event.data.object, is_new=True)


async def handle_subscription_updated(db: AsyncSession, event: SubscriptionUpdatedEvent) -> None:
    """Handle customer.subscription.updated."""
    await reconcile_subscription(db, event.data.object, is_new=False)


async def handle_subscription_deleted(db: AsyncSession, event: SubscriptionDeletedEvent) -> None:
    """Handle customer.subscription.deleted — mark canceled, keep the row."""
    await set_subscription_status(
        db,
        event.data.object.id,
        status="canceled",
        is_active=False,
        cancel_at_period_end=False,
    )


async def handle_invoice_payment_succeeded(
    db: AsyncSession, event: InvoicePaymentSucceededEvent
) -> None:
    """Handle invoice.payment_succeeded — reactivate and re-run credit allocation.

    Allocation uses the stored plan name, so a starter row (stored as
    ``basic``) has no cap and gets no credits here.
    """
    invoice = event.data.object
    subscription_id = invoice.subscription_id
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping", invoice.id)
        return

    subscription = await set_subscription_status(
        db, subscription_id, status="active", is_active=True
    )
    if subscription is None:
        return

    stripe_sub = await fetch_subscription(subscription_id)
    await allocate_credits(db, subscription.user_id, subscription.plan, "active", stripe_sub)


async def handle_invoice_payment_failed(
    db: AsyncSession, event: InvoicePaymentFailedEvent
) -> None:
    """Handle invoice.payment_failed — mark subscription as past_due."""
    invoice = event.data.object
    subscription_id = invoice.subscription_id
    if not subscription_id:
        logger.info(
            "Invoice %s has no subscription (one-time), skipping payment failure",
            invoice.id,
        )
        return

    await set_subscription_status(db, subscription_id, status="past_due", is_active=False)
