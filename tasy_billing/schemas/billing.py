"""Pydantic v2 request/response schemas for billing endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Request to create a Stripe Checkout session."""

    plan: str  # "starter", "pro" or "business"
    interval: str = "monthly"
    promotion_code: str | None = Field(default=None, alias="promotionCode")
    ui_mode: Literal["embedded", "hosted"] = Field(default="embedded", alias="uiMode")
    return_url: str | None = Field(default=None, alias="returnUrl")

    model_config = ConfigDict(populate_by_name=True)


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Plan details for display."""

    name: str
    display_name: str
    monthly_credits: int
    price_monthly_cents: int


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SubscriptionDetails(BaseModel):
    """The caller's tasy-viral subscription."""

    plan: str
    status: str
    billing_interval: str
    is_active: bool
    stripe_subscription_id: str
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool


class SubscriptionResponse(BaseModel):
    """Credit balance plus current subscription (None before first purchase)."""

    credits: int
    subscription: SubscriptionDetails | None


class CheckoutResponse(BaseModel):
    """Embedded checkouts return a client secret, hosted ones a URL."""

    client_secret: str | None = None
    session_id: str | None = None
    url: str | None = None


class PortalResponse(BaseModel):
    """Stripe Customer Portal URL returned to frontend."""

    url: str


class WebhookResponse(BaseModel):
    """Acknowledgement returned to Stripe for every verified event."""

    received: bool
    event_id: str = Field(serialization_alias="eventId")
