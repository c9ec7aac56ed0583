"""Typed Stripe webhook events.

Each event kind the service reacts to gets its own model, discriminated on
the ``type`` tag, so handlers receive a concrete payload instead of probing
a loose dict. Only the fields the reconciliation flow reads are modelled;
everything else in the Stripe payload is ignored.
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger(__name__)


def _expandable_id(value: Any) -> Any:
    """Collapse an expanded Stripe object (``{"id": ...}``) to its id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


class _StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# --- Payload objects ---


class Recurring(_StripeModel):
    interval: str  # day, week, month, year
    interval_count: int = 1


class Price(_StripeModel):
    id: str
    recurring: Recurring | None = None


class SubscriptionItem(_StripeModel):
    price: Price
    # Stripe API 2025-08-27 (basil) moved the period bounds onto the item
    current_period_start: int | None = None
    current_period_end: int | None = None


class SubscriptionItemList(_StripeModel):
    data: list[SubscriptionItem] = []


class StripeSubscription(_StripeModel):
    """The subsection of a Stripe Subscription object the reconciler needs."""

    id: str
    customer: str
    status: str
    items: SubscriptionItemList = SubscriptionItemList()
    metadata: dict[str, str] = {}
    cancel_at_period_end: bool = False
    current_period_start: int | None = None
    current_period_end: int | None = None

    collapse_customer = field_validator("customer", mode="before")(_expandable_id)

    @field_validator("metadata", mode="before")
    @classmethod
    def none_metadata(cls, value: Any) -> Any:
        return value or {}

    @property
    def first_item(self) -> SubscriptionItem | None:
        return self.items.data[0] if self.items.data else None

    @property
    def price_id(self) -> str | None:
        item = self.first_item
        return item.price.id if item else None

    @property
    def is_yearly(self) -> bool:
        """True when the first item bills once a year."""
        item = self.first_item
        return bool(item and item.price.recurring and item.price.recurring.interval == "year")

    def period_bounds(self) -> tuple[datetime | None, datetime | None]:
        """Current billing period, preferring the item-level fields."""
        item = self.first_item
        start = item.current_period_start if item and item.current_period_start else self.current_period_start
        end = item.current_period_end if item and item.current_period_end else self.current_period_end
        return ts_to_naive(start), ts_to_naive(end)


class CheckoutSession(_StripeModel):
    id: str
    customer: str | None = None
    subscription: str | None = None
    mode: str | None = None
    metadata: dict[str, str] = {}

    collapse_ids = field_validator("customer", "subscription", mode="before")(_expandable_id)

    @field_validator("metadata", mode="before")
    @classmethod
    def none_metadata(cls, value: Any) -> Any:
        return value or {}


class _SubscriptionDetails(_StripeModel):
    subscription: str | None = None

    collapse_subscription = field_validator("subscription", mode="before")(_expandable_id)


class _InvoiceParent(_StripeModel):
    subscription_details: _SubscriptionDetails | None = None


class Invoice(_StripeModel):
    id: str
    customer: str | None = None
    subscription: str | None = None
    # Newer API versions nest the subscription under parent.subscription_details
    parent: _InvoiceParent | None = None

    collapse_ids = field_validator("customer", "subscription", mode="before")(_expandable_id)

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details.subscription
        return None


# --- Event envelopes ---

ObjT = TypeVar("ObjT")


class EventData(BaseModel, Generic[ObjT]):
    object: ObjT


class _EventBase(_StripeModel):
    id: str
    created: int | None = None
    livemode: bool = False

    @property
    def customer_id(self) -> str | None:
        return getattr(self.data.object, "customer", None)  # type: ignore[attr-defined]

    @property
    def subscription_ref(self) -> str | None:
        """Subscription id carried by the payload, if any."""
        return None


class CheckoutSessionCompletedEvent(_EventBase):
    type: Literal["checkout.session.completed"]
    data: EventData[CheckoutSession]

    @property
    def subscription_ref(self) -> str | None:
        return self.data.object.subscription


class SubscriptionCreatedEvent(_EventBase):
    type: Literal["customer.subscription.created"]
    data: EventData[StripeSubscription]


class SubscriptionUpdatedEvent(_EventBase):
    type: Literal["customer.subscription.updated"]
    data: EventData[StripeSubscription]


class SubscriptionDeletedEvent(_EventBase):
    type: Literal["customer.subscription.deleted"]
    data: EventData[StripeSubscription]


class InvoicePaymentSucceededEvent(_EventBase):
    type: Literal["invoice.payment_succeeded"]
    data: EventData[Invoice]

    @property
    def subscription_ref(self) -> str | None:
        return self.data.object.subscription_id


class InvoicePaymentFailedEvent(_EventBase):
    type: Literal["invoice.payment_failed"]
    data: EventData[Invoice]

    @property
    def subscription_ref(self) -> str | None:
        return self.data.object.subscription_id


class UnhandledEvent(_StripeModel):
    """Any event type the service does not react to."""

    id: str
    type: str
    data: dict[str, Any] = {}

    @property
    def customer_id(self) -> str | None:
        obj = self.data.get("object") or {}
        customer = _expandable_id(obj.get("customer"))
        return customer if isinstance(customer, str) else None

    @property
    def subscription_ref(self) -> str | None:
        obj = self.data.get("object") or {}
        subscription = _expandable_id(obj.get("subscription"))
        return subscription if isinstance(subscription, str) else None


StripeEvent = Annotated[
    Union[
        CheckoutSessionCompletedEvent,
        SubscriptionCreatedEvent,
        SubscriptionUpdatedEvent,
        SubscriptionDeletedEvent,
        InvoicePaymentSucceededEvent,
        InvoicePaymentFailedEvent,
    ],
    Field(discriminator="type"),
]

HANDLED_EVENT_TYPES: frozenset[str] = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.payment_succeeded",
        "invoice.payment_failed",
    }
)

_event_adapter: TypeAdapter[StripeEvent] = TypeAdapter(StripeEvent)


class _Envelope(_StripeModel):
    id: str
    type: str


def parse_event(payload: bytes | str) -> StripeEvent | UnhandledEvent:
    """Parse a verified webhook body into its typed event.

    A handled type whose payload does not match its model comes back as an
    ``UnhandledEvent`` so it is still logged and acknowledged.

    Raises:
        pydantic.ValidationError: If the body is not JSON or lacks ``id``/``type``.
    """
    envelope = _Envelope.model_validate_json(payload)
    if envelope.type not in HANDLED_EVENT_TYPES:
        return UnhandledEvent.model_validate_json(payload)
    try:
        return _event_adapter.validate_json(payload)
    except ValidationError as e:
        logger.warning(
            "Malformed %s payload in event %s, not dispatching: %s",
            envelope.type,
            envelope.id,
            e,
        )
        return UnhandledEvent.model_validate_json(payload)
