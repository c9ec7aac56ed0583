"""Credit allocation — tops up a profile's balance for an active plan."""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from tasy_billing.billing.events import StripeSubscription
from tasy_billing.billing.plans import get_credit_cap
from tasy_billing.services.subscription_service import get_profile

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12


def credits_to_add(cap: int, current: int, yearly: bool) -> int:
    """Credits granted for one allocation run.

    Yearly billing adds a full year's allocation on every run. Monthly
    billing only fills the gap up to the cap and never takes credits away.
    """
    if yearly:
        return cap * MONTHS_PER_YEAR
    return max(0, cap - current)


async def allocate_credits(
    db: AsyncSession,
    user_id: uuid.UUID,
    plan: str | None,
    status: str,
    stripe_sub: StripeSubscription,
) -> int:
    """Grant plan credits to a user. Returns the number of credits added."""
    if status != "active":
        logger.info("Subscription %s is %s, skipping credit update", stripe_sub.id, status)
        return 0

    cap = get_credit_cap(plan)
    if cap is None:
        logger.info("No credit cap for plan %r, skipping credit update", plan)
        return 0

    profile = await get_profile(db, user_id)
    if profile is None:
        logger.warning("No profile %s to credit for subscription %s", user_id, stripe_sub.id)
        return 0

    current = profile.credits or 0
    yearly = stripe_sub.is_yearly
    added = credits_to_add(cap, current, yearly)
    if added <= 0:
        logger.info(
            "User %s already holds %d credits (cap %d), nothing to add", user_id, current, cap
        )
        return 0

    profile.credits = current + added
    await db.flush()
    logger.info(
        "Credited user %s: %d -> %d (+%d, plan=%s, %s)",
        user_id,
        current,
        profile.credits,
        added,
        plan,
        "yearly" if yearly else "monthly",
    )
    return added
