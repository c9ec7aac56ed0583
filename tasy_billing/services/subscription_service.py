"""Subscription service — profile lookups and subscription persistence."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasy_billing.billing.events import StripeSubscription
from tasy_billing.billing.exceptions import UserResolutionError
from tasy_billing.billing.plans import BillingInterval, to_stored_plan
from tasy_billing.billing.stripe_client import create_customer
from tasy_billing.models.profile import Profile
from tasy_billing.models.subscription import PRODUCT_TAG, Subscription

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile | None:
    """Look up a profile by user ID."""
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    return result.scalar_one_or_none()


async def get_profile_by_stripe_customer(
    db: AsyncSession, stripe_customer_id: str
) -> Profile | None:
    """Look up the first profile linked to a Stripe customer ID."""
    result = await db.execute(
        select(Profile).where(Profile.stripe_customer_id == stripe_customer_id)
    )
    return result.scalars().first()


async def resolve_profile(db: AsyncSession, stripe_sub: StripeSubscription) -> Profile:
    """Find the profile that owns a Stripe subscription.

    Tries the stored customer ID first, then the ``user_id`` the checkout
    flow writes into subscription metadata. A metadata match backfills the
    profile's customer ID so later events resolve directly.

    Raises:
        UserResolutionError: If neither lookup finds a profile.
    """
    customer_id = stripe_sub.customer
    profile = await get_profile_by_stripe_customer(db, customer_id)
    if profile is not None:
        return profile

    logger.info("No profile found for customer %s, trying metadata", customer_id)
    raw_user_id = stripe_sub.metadata.get("user_id")
    if not raw_user_id:
        logger.error("No way to identify user for customer %s", customer_id)
        raise UserResolutionError(customer_id)

    try:
        user_id = uuid.UUID(raw_user_id)
    except ValueError:
        logger.error("Malformed metadata user_id %r for customer %s", raw_user_id, customer_id)
        raise UserResolutionError(customer_id) from None

    profile = await get_profile(db, user_id)
    if profile is None:
        logger.error("Metadata user %s for customer %s has no profile", user_id, customer_id)
        raise UserResolutionError(customer_id)

    profile.stripe_customer_id = customer_id
    await db.flush()
    logger.info("Linked Stripe customer %s to user %s", customer_id, user_id)
    return profile


async def get_subscription_by_stripe_subscription(
    db: AsyncSession, stripe_subscription_id: str
) -> Subscription | None:
    """Look up subscription by Stripe subscription ID (used by webhooks)."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
    )
    return result.scalar_one_or_none()


async def upsert_subscription(
    db: AsyncSession,
    profile: Profile,
    stripe_sub: StripeSubscription,
    plan: str,
    billing_interval: BillingInterval,
    price_id: str,
) -> Subscription:
    """Insert or update the row keyed by the Stripe subscription ID."""
    period_start, period_end = stripe_sub.period_bounds()
    values = {
        "user_id": profile.id,
        "email": profile.email,
        "stripe_customer_id": stripe_sub.customer,
        "stripe_subscription_id": stripe_sub.id,
        "status": stripe_sub.status,
        "plan": to_stored_plan(plan),
        "billing_interval": billing_interval,
        "price_id": price_id,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "cancel_at_period_end": stripe_sub.cancel_at_period_end,
        "is_active": stripe_sub.status == "active",
        "product": PRODUCT_TAG,
        "metadata_": {"product": PRODUCT_TAG},
    }

    subscription = await get_subscription_by_stripe_subscription(db, stripe_sub.id)
    if subscription is None:
        subscription = Subscription(**values)
        db.add(subscription)
        action = "Created"
    else:
        for key, value in values.items():
            setattr(subscription, key, value)
        action = "Updated"
    await db.flush()

    logger.info(
        "%s subscription %s (%s): plan=%s, interval=%s, status=%s",
        action,
        subscription.id,
        stripe_sub.id,
        subscription.plan,
        billing_interval,
        subscription.status,
    )
    return subscription


async def link_profile_subscription(
    db: AsyncSession, profile: Profile, subscription: Subscription
) -> None:
    """Point the profile at its subscription and mark onboarding complete."""
    profile.subscription_id = subscription.id
    profile.new_onboarding_completed = True
    profile.new_onboarding_completed_at = _utcnow()
    await db.flush()


async def set_subscription_status(
    db: AsyncSession,
    stripe_subscription_id: str,
    status: str,
    is_active: bool,
    cancel_at_period_end: bool | None = None,
) -> Subscription | None:
    """Update status flags on the row for a Stripe subscription, if one exists."""
    subscription = await get_subscription_by_stripe_subscription(db, stripe_subscription_id)
    if subscription is None:
        logger.warning(
            "No local subscription found for Stripe subscription %s (status=%s)",
            stripe_subscription_id,
            status,
        )
        return None

    subscription.status = status
    subscription.is_active = is_active
    if cancel_at_period_end is not None:
        subscription.cancel_at_period_end = cancel_at_period_end
    await db.flush()
    logger.info(
        "Subscription %s marked %s (active=%s)", stripe_subscription_id, status, is_active
    )
    return subscription


async def list_active_subscriptions(
    db: AsyncSession, user_id: uuid.UUID
) -> list[Subscription]:
    """Active subscriptions of any product for a user, newest first."""
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status.in_(ACTIVE_STATUSES),
            Subscription.is_active.is_(True),
        )
        .order_by(Subscription.created_at.desc())
    )
    return list(result.scalars().all())


async def get_current_subscription(
    db: AsyncSession, user_id: uuid.UUID
) -> Subscription | None:
    """The user's most recently updated tasy-viral subscription."""
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.product == PRODUCT_TAG,
        )
        .order_by(Subscription.updated_at.desc())
    )
    return result.scalars().first()


async def ensure_stripe_customer(db: AsyncSession, profile: Profile, email: str) -> str:
    """Ensure the profile has a Stripe customer ID. Create one if missing."""
    if profile.stripe_customer_id:
        return profile.stripe_customer_id

    customer = await create_customer(email=profile.email or email, user_id=str(profile.id))
    profile.stripe_customer_id = customer.id
    await db.flush()
    logger.info("Linked Stripe customer %s to user %s", customer.id, profile.id)
    return customer.id
