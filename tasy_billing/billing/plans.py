"""Plan definitions — pricing tiers, Stripe prices and credit allocations."""

from dataclasses import dataclass
from typing import Literal

from tasy_billing.config import settings

BillingInterval = Literal["monthly", "yearly"]


@dataclass(frozen=True)
class PlanTier:
    """A tasy-viral subscription tier."""

    name: str  # pricing name used by checkout and the price table
    stored_plan: str  # value persisted in subscriptions.plan
    display_name: str
    monthly_credits: int
    price_monthly_cents: int  # in euro cents (e.g., 2900 = €29.00)
    monthly_price_id: str | None
    yearly_price_id: str | None  # None until yearly billing is offered


PLANS: dict[str, PlanTier] = {
    "starter": PlanTier(
        name="starter",
        stored_plan="basic",
        display_name="Starter",
        monthly_credits=240,
        price_monthly_cents=999,
        monthly_price_id=settings.stripe_starter_monthly_price_id or None,
        yearly_price_id=settings.stripe_starter_yearly_price_id or None,
    ),
    "pro": PlanTier(
        name="pro",
        stored_plan="pro",
        display_name="Pro",
        monthly_credits=720,
        price_monthly_cents=2900,
        monthly_price_id=settings.stripe_pro_monthly_price_id or None,
        yearly_price_id=settings.stripe_pro_yearly_price_id or None,
    ),
    "business": PlanTier(
        name="business",
        stored_plan="business",
        display_name="Business",
        monthly_credits=1999,
        price_monthly_cents=9900,
        monthly_price_id=settings.stripe_business_monthly_price_id or None,
        yearly_price_id=settings.stripe_business_yearly_price_id or None,
    ),
}


def _build_price_table() -> dict[str, tuple[str, BillingInterval]]:
    table: dict[str, tuple[str, BillingInterval]] = {}
    for plan in PLANS.values():
        if plan.monthly_price_id:
            table[plan.monthly_price_id] = (plan.name, "monthly")
        if plan.yearly_price_id:
            table[plan.yearly_price_id] = (plan.name, "yearly")
    return table


# Stripe price ID -> (plan name, billing interval)
PRICE_TABLE: dict[str, tuple[str, BillingInterval]] = _build_price_table()


def get_plan(plan_name: str) -> PlanTier | None:
    """Get a tier by pricing name. Stored names such as "basic" do not match."""
    return PLANS.get(plan_name)


def get_plan_by_price_id(price_id: str) -> tuple[str, BillingInterval] | None:
    """Reverse lookup: Stripe price ID -> (plan name, interval). None if unmapped."""
    return PRICE_TABLE.get(price_id)


def get_price_id(plan_name: str, interval: BillingInterval) -> str | None:
    """Stripe price ID for a plan/interval pair, if configured."""
    plan = PLANS.get(plan_name)
    if plan is None:
        return None
    return plan.monthly_price_id if interval == "monthly" else plan.yearly_price_id


def get_credit_cap(plan_name: str | None) -> int | None:
    """Monthly credit allocation for a tier, or None for unknown tiers."""
    if not plan_name:
        return None
    plan = get_plan(plan_name)
    return plan.monthly_credits if plan else None


def to_stored_plan(plan_name: str) -> str:
    """Map a pricing name to the value stored in subscriptions.plan."""
    plan = PLANS.get(plan_name)
    return plan.stored_plan if plan else plan_name
