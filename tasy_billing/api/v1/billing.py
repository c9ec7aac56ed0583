"""Billing API endpoints — plans, credit balance, Stripe Checkout and Customer Portal."""

import asyncio
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tasy_billing.api.deps import get_current_profile, get_db, get_token_claims
from tasy_billing.billing.plans import PLANS, get_price_id
from tasy_billing.billing.stripe_client import (
    create_checkout_session,
    create_portal_session,
)
from tasy_billing.config import settings
from tasy_billing.models.profile import Profile
from tasy_billing.models.subscription import PRODUCT_TAG
from tasy_billing.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    PlanResponse,
    PlansListResponse,
    PortalResponse,
    SubscriptionDetails,
    SubscriptionResponse,
)
from tasy_billing.services.subscription_service import (
    ensure_stripe_customer,
    get_current_subscription,
    list_active_subscriptions,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public — no auth required)."""
    return PlansListResponse(
        plans=[
            PlanResponse(
                name=p.name,
                display_name=p.display_name,
                monthly_credits=p.monthly_credits,
                price_monthly_cents=p.price_monthly_cents,
            )
            for p in PLANS.values()
        ]
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
) -> SubscriptionResponse:
    """Get the caller's credit balance and current subscription."""
    subscription = await get_current_subscription(db, profile.id)
    details = None
    if subscription is not None:
        details = SubscriptionDetails(
            plan=subscription.plan,
            status=subscription.status,
            billing_interval=subscription.billing_interval,
            is_active=subscription.is_active,
            stripe_subscription_id=subscription.stripe_subscription_id,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )
    return SubscriptionResponse(credits=profile.credits, subscription=details)


def _build_checkout_params(
    body: CheckoutRequest, customer_id: str, price_id: str, user_id: str
) -> dict:
    """Stripe Checkout params for a tasy-viral subscription."""
    site_url = settings.frontend_url
    params: dict = {
        "customer": customer_id,
        "line_items": [{"price": price_id, "quantity": 1}],
        "mode": "subscription",
        "ui_mode": body.ui_mode,
        "automatic_tax": {"enabled": True},
        "customer_update": {"address": "auto", "name": "auto"},
        "payment_method_types": ["card", "link"],
        # Copied onto the subscription so webhooks can resolve the user and product
        "subscription_data": {
            "metadata": {
                "user_id": user_id,
                "plan": body.plan,
                "billing_interval": body.interval,
                "product": PRODUCT_TAG,
            }
        },
        "metadata": {"product": PRODUCT_TAG, "user_id": user_id},
    }

    if body.ui_mode == "embedded":
        params["return_url"] = body.return_url or f"{site_url}/onboarding"
    else:
        params["success_url"] = (
            f"{site_url}/subscription/success?plan={body.plan}&interval={body.interval}"
            f"&customer={customer_id}&session_id={{CHECKOUT_SESSION_ID}}"
        )
        params["cancel_url"] = f"{site_url}/subscription?canceled=true"

    if body.promotion_code:
        params["discounts"] = [{"promotion_code": body.promotion_code}]
    else:
        params["allow_promotion_codes"] = True
    return params


@router.post("/checkout", response_model=CheckoutResponse, response_model_exclude_none=True)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
    claims: dict = Depends(get_token_claims),
) -> CheckoutResponse:
    """Create a Stripe Checkout session for a tasy-viral subscription."""
    if body.interval != "monthly":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only monthly billing is supported at this time",
        )

    price_id = get_price_id(body.plan, "monthly")
    if not price_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Price ID not configured for {body.plan}_monthly",
        )

    try:
        customer_id = await ensure_stripe_customer(db, profile, claims.get("email", ""))
        # Keep the customer link even if session creation fails below
        await db.commit()
        params = _build_checkout_params(body, customer_id, price_id, str(profile.id))
        session = await asyncio.wait_for(
            create_checkout_session(params),
            timeout=settings.stripe_checkout_timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.error("Stripe checkout timed out for user %s", profile.id)
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Stripe API timeout",
        ) from e
    except stripe.StripeError as e:
        logger.error("Stripe checkout error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    logger.info("Checkout session %s created for user %s", session.id, profile.id)

    if body.ui_mode == "embedded" and session.client_secret:
        return CheckoutResponse(client_secret=session.client_secret, session_id=session.id)
    return CheckoutResponse(url=session.url)


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    request: Request,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
) -> PortalResponse:
    """Create a Stripe Customer Portal session for subscription management."""
    # Any active subscription works; tasy-viral wins when the user has several products
    subscriptions = await list_active_subscriptions(db, profile.id)
    subscription = next(
        (s for s in subscriptions if s.product == PRODUCT_TAG),
        subscriptions[0] if subscriptions else None,
    )

    if subscription is None or not subscription.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You need to subscribe to a plan before you can manage billing.",
        )

    origin = request.headers.get("origin") or settings.frontend_url
    try:
        session = await create_portal_session(
            customer_id=subscription.stripe_customer_id,
            return_url=f"{origin}/settings",
        )
    except stripe.StripeError as e:
        logger.error("Stripe portal error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    return PortalResponse(url=session.url)
