"""Subscription model — Stripe billing state per provider subscription."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, ForeignKey, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tasy_billing.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

PRODUCT_TAG = "tasy-viral"


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A Stripe subscription mirrored locally.

    The table is shared with sibling products; ``product`` tells them apart.
    Rows are never deleted, cancellation only flips ``status``/``is_active``.
    """

    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Stripe identifiers
    stripe_customer_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    stripe_subscription_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    # Plan & status (status mirrors Stripe verbatim)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    plan: Mapped[str] = mapped_column(String(50), nullable=False)  # basic, pro, business
    billing_interval: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    price_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Billing period
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    product: Mapped[str] = mapped_column(String(50), nullable=False, default=PRODUCT_TAG)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    # Relationships
    profile: Mapped["Profile"] = relationship(back_populates="subscriptions", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, stripe_subscription_id={self.stripe_subscription_id}, "
            f"plan={self.plan}, status={self.status})>"
        )
