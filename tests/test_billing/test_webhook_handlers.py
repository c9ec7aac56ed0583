"""Tests for Stripe webhook handler functions with typed Stripe events."""

import json
import uuid
from unittest.mock import AsyncMock, patch

import pytest
import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from tasy_billing.billing.events import parse_event
from tasy_billing.billing.exceptions import UnknownPriceError, UserResolutionError
from tasy_billing.billing.plans import PRICE_TABLE
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
from tasy_billing.services.subscription_service import get_subscription_by_stripe_subscription


def _subscription_object(
    price_id: str | None = None,
    sub_id: str = "sub_wh_123",
    customer: str = "cus_wh_123",
    status: str = "active",
    interval: str = "month",
    metadata: dict | None = None,
) -> dict:
    """Build a raw subscription payload in the shape Stripe sends it."""
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": False,
        "metadata": metadata if metadata is not None else {"product": "tasy-viral"},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_wh",
                    "price": {
                        "id": price_id or settings.stripe_pro_monthly_price_id,
                        "recurring": {"interval": interval},
                    },
                    "current_period_start": 1706745600,
                    "current_period_end": 1709251200,
                }
            ],
        },
    }


def _stripe_subscription(**kwargs) -> stripe.Subscription:
    """What StripeClient.v1.subscriptions.retrieve_async returns."""
    return stripe.Subscription.construct_from(_subscription_object(**kwargs), "sk_test")


def _event(event_type: str, obj: dict):
    payload = {
        "id": f"evt_test_{uuid.uuid4().hex[:8]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }
    return parse_event(json.dumps(payload).encode())


class TestSubscriptionCreated:
    """customer.subscription.created mirrors the subscription and credits the user."""

    async def test_creates_row_and_tops_up(self, db_session: AsyncSession, make_profile):
        profile = await make_profile(credits=100, stripe_customer_id="cus_wh_123")

        await handle_subscription_created(
            db_session, _event("customer.subscription.created", _subscription_object())
        )

        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription is not None
        assert subscription.plan == "pro"
        assert subscription.billing_interval == "monthly"
        assert subscription.is_active is True
        assert subscription.user_id == profile.id

        await db_session.refresh(profile)
        assert profile.credits == 720
        assert profile.subscription_id == subscription.id
        assert profile.new_onboarding_completed is True

    async def test_starter_stored_as_basic(self, db_session: AsyncSession, make_profile):
        profile = await make_profile(stripe_customer_id="cus_wh_123")
        obj = _subscription_object(price_id=settings.stripe_starter_monthly_price_id)

        await handle_subscription_created(db_session, _event("customer.subscription.created", obj))

        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription.plan == "basic"
        await db_session.refresh(profile)
        assert profile.credits == 240

    async def test_resolves_user_from_metadata(self, db_session: AsyncSession, make_profile):
        profile = await make_profile()
        obj = _subscription_object(
            customer="cus_first_checkout",
            metadata={"product": "tasy-viral", "user_id": str(profile.id)},
        )

        await handle_subscription_created(db_session, _event("customer.subscription.created", obj))

        await db_session.refresh(profile)
        assert profile.stripe_customer_id == "cus_first_checkout"
        assert profile.credits == 720

    async def test_other_product_is_skipped(self, db_session: AsyncSession, make_profile):
        profile = await make_profile(credits=3, stripe_customer_id="cus_wh_123")
        obj = _subscription_object(metadata={"product": "tasy-main"})

        await handle_subscription_created(db_session, _event("customer.subscription.created", obj))

        assert await get_subscription_by_stripe_subscription(db_session, "sub_wh_123") is None
        await db_session.refresh(profile)
        assert profile.credits == 3

    async def test_unknown_price_raises(self, db_session: AsyncSession, make_profile):
        await make_profile(stripe_customer_id="cus_wh_123")
        obj = _subscription_object(price_id="price_not_in_table")

        with pytest.raises(UnknownPriceError) as exc_info:
            await handle_subscription_created(db_session, _event("customer.subscription.created", obj))
        assert exc_info.value.price_id == "price_not_in_table"

    async def test_metadata_backfill_survives_unknown_price(
        self, db_session: AsyncSession, make_profile
    ):
        profile = await make_profile()
        obj = _subscription_object(
            customer="cus_backfilled",
            price_id="price_not_in_table",
            metadata={"product": "tasy-viral", "user_id": str(profile.id)},
        )

        with pytest.raises(UnknownPriceError):
            await handle_subscription_created(db_session, _event("customer.subscription.created", obj))
        await db_session.rollback()

        await db_session.refresh(profile)
        assert profile.stripe_customer_id == "cus_backfilled"
        assert await get_subscription_by_stripe_subscription(db_session, "sub_wh_123") is None

    async def test_unresolvable_user_raises(self, db_session: AsyncSession):
        obj = _subscription_object(customer="cus_nobody")

        with pytest.raises(UserResolutionError):
            await handle_subscription_created(db_session, _event("customer.subscription.created", obj))


class TestSubscriptionUpdated:
    async def test_updates_existing_row(self, db_session: AsyncSession, make_profile):
        await make_profile(stripe_customer_id="cus_wh_123")
        await handle_subscription_created(
            db_session, _event("customer.subscription.created", _subscription_object())
        )

        obj = _subscription_object(
            price_id=settings.stripe_business_monthly_price_id, status="past_due"
        )
        await handle_subscription_updated(db_session, _event("customer.subscription.updated", obj))

        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription.plan == "business"
        assert subscription.status == "past_due"
        assert subscription.is_active is False

    async def test_non_active_status_skips_credits(self, db_session: AsyncSession, make_profile):
        profile = await make_profile(credits=10, stripe_customer_id="cus_wh_123")
        obj = _subscription_object(status="incomplete")

        await handle_subscription_updated(db_session, _event("customer.subscription.updated", obj))

        await db_session.refresh(profile)
        assert profile.credits == 10
        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription.status == "incomplete"

    async def test_yearly_adds_full_year(self, db_session: AsyncSession, make_profile, monkeypatch):
        monkeypatch.setitem(PRICE_TABLE, "price_pro_yearly_test", ("pro", "yearly"))
        profile = await make_profile(credits=50, stripe_customer_id="cus_wh_123")
        obj = _subscription_object(price_id="price_pro_yearly_test", interval="year")

        await handle_subscription_updated(db_session, _event("customer.subscription.updated", obj))

        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription.billing_interval == "yearly"
        await db_session.refresh(profile)
        assert profile.credits == 50 + 720 * 12


class TestSubscriptionDeleted:
    async def test_marks_canceled(self, db_session: AsyncSession, make_profile):
        profile = await make_profile(credits=500, stripe_customer_id="cus_wh_123")
        await handle_subscription_created(
            db_session, _event("customer.subscription.created", _subscription_object())
        )

        obj = _subscription_object(status="canceled")
        await handle_subscription_deleted(db_session, _event("customer.subscription.deleted", obj))

        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription.status == "canceled"
        assert subscription.is_active is False
        assert subscription.cancel_at_period_end is False
        # Credits are never clawed back
        await db_session.refresh(profile)
        assert profile.credits == 720

    async def test_unknown_subscription_is_noop(self, db_session: AsyncSession):
        obj = _subscription_object(sub_id="sub_never_seen", status="canceled")
        await handle_subscription_deleted(db_session, _event("customer.subscription.deleted", obj))
        assert await get_subscription_by_stripe_subscription(db_session, "sub_never_seen") is None


class TestInvoiceEvents:
    async def test_payment_failed_marks_past_due(self, db_session: AsyncSession, make_profile):
        await make_profile(stripe_customer_id="cus_wh_123")
        await handle_subscription_created(
            db_session, _event("customer.subscription.created", _subscription_object())
        )

        event = _event(
            "invoice.payment_failed", {"id": "in_1", "customer": "cus_wh_123", "subscription": "sub_wh_123"}
        )
        await handle_invoice_payment_failed(db_session, event)

        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription.status == "past_due"
        assert subscription.is_active is False

    async def test_payment_succeeded_reactivates_and_refills(
        self, db_session: AsyncSession, make_profile
    ):
        profile = await make_profile(stripe_customer_id="cus_wh_123")
        await handle_subscription_created(
            db_session, _event("customer.subscription.created", _subscription_object())
        )
        await handle_invoice_payment_failed(
            db_session,
            _event("invoice.payment_failed", {"id": "in_1", "customer": "cus_wh_123", "subscription": "sub_wh_123"}),
        )
        profile.credits = 15
        await db_session.flush()

        event = _event(
            "invoice.payment_succeeded",
            {"id": "in_2", "customer": "cus_wh_123", "subscription": "sub_wh_123"},
        )
        with patch(
            "tasy_billing.billing.webhooks.get_subscription",
            new_callable=AsyncMock,
            return_value=_stripe_subscription(),
        ) as mock_get:
            await handle_invoice_payment_succeeded(db_session, event)

        mock_get.assert_awaited_once_with("sub_wh_123")
        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription.status == "active"
        assert subscription.is_active is True
        await db_session.refresh(profile)
        assert profile.credits == 720

    async def test_starter_renewal_adds_no_credits(self, db_session: AsyncSession, make_profile):
        """Renewals allocate by the stored plan; "basic" has no credit cap."""
        profile = await make_profile(stripe_customer_id="cus_wh_123")
        starter_price = settings.stripe_starter_monthly_price_id
        await handle_subscription_created(
            db_session,
            _event("customer.subscription.created", _subscription_object(price_id=starter_price)),
        )
        profile.credits = 15
        await db_session.flush()

        event = _event(
            "invoice.payment_succeeded",
            {"id": "in_5", "customer": "cus_wh_123", "subscription": "sub_wh_123"},
        )
        with patch(
            "tasy_billing.billing.webhooks.get_subscription",
            new_callable=AsyncMock,
            return_value=_stripe_subscription(price_id=starter_price),
        ):
            await handle_invoice_payment_succeeded(db_session, event)

        subscription = await get_subscription_by_stripe_subscription(db_session, "sub_wh_123")
        assert subscription.plan == "basic"
        assert subscription.status == "active"
        await db_session.refresh(profile)
        assert profile.credits == 15

    async def test_one_time_invoice_is_skipped(self, db_session: AsyncSession):
        event = _event("invoice.payment_succeeded", {"id": "in_3", "customer": "cus_wh_123"})
        with patch(
            "tasy_billing.billing.webhooks.get_subscription", new_callable=AsyncMock
        ) as mock_get:
            await handle_invoice_payment_succeeded(db_session, event)
        mock_get.assert_not_called()

    async def test_unknown_subscription_skips_stripe_call(self, db_session: AsyncSession):
        event = _event(
            "invoice.payment_succeeded",
            {"id": "in_4", "customer": "cus_wh_123", "subscription": "sub_unknown"},
        )
        with patch(
            "tasy_billing.billing.webhooks.get_subscription", new_callable=AsyncMock
        ) as mock_get:
            await handle_invoice_payment_succeeded(db_session, event)
        mock_get.assert_not_called()


class TestCheckoutCompleted:
    async def test_writes_nothing(self, db_session: AsyncSession):
        event = _event(
            "checkout.session.completed",
            {"id": "cs_1", "customer": "cus_wh_123", "subscription": "sub_wh_123", "mode": "subscription"},
        )
        await handle_checkout_session_completed(db_session, event)
        assert await get_subscription_by_stripe_subscription(db_session, "sub_wh_123") is None


class TestResolveEventCustomerId:
    async def test_customer_from_payload(self):
        event = _event("customer.subscription.updated", _subscription_object())
        assert await resolve_event_customer_id(event) == "cus_wh_123"

    async def test_customer_via_subscription_lookup(self):
        event = _event(
            "checkout.session.completed",
            {"id": "cs_2", "customer": None, "subscription": "sub_wh_123", "mode": "subscription"},
        )
        with patch(
            "tasy_billing.billing.webhooks.get_subscription",
            new_callable=AsyncMock,
            return_value=_stripe_subscription(customer="cus_from_lookup"),
        ):
            assert await resolve_event_customer_id(event) == "cus_from_lookup"

    async def test_lookup_failure_gives_none(self):
        event = _event(
            "checkout.session.completed",
            {"id": "cs_3", "customer": None, "subscription": "sub_wh_123", "mode": "subscription"},
        )
        with patch(
            "tasy_billing.billing.webhooks.get_subscription",
            new_callable=AsyncMock,
            side_effect=stripe.APIConnectionError("network down"),
        ):
            assert await resolve_event_customer_id(event) is None

    async def test_unparseable_subscription_gives_none(self):
        event = _event(
            "checkout.session.completed",
            {"id": "cs_4", "customer": None, "subscription": "sub_wh_123", "mode": "subscription"},
        )
        broken = stripe.Subscription.construct_from({"id": "sub_wh_123", "object": "subscription"}, "sk_test")
        with patch(
            "tasy_billing.billing.webhooks.get_subscription",
            new_callable=AsyncMock,
            return_value=broken,
        ):
            assert await resolve_event_customer_id(event) is None

    async def test_no_customer_no_subscription(self):
        event = _event("charge.succeeded", {"id": "ch_1"})
        assert await resolve_event_customer_id(event) is None
