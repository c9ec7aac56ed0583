"""Profile model — one row per Supabase auth user."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tasy_billing.database import Base, TimestampMixin


class Profile(TimestampMixin, Base):
    """User profile carrying the Stripe customer link and credit balance."""

    __tablename__ = "profiles"

    # Same value as the Supabase auth user id
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Null until the first checkout creates a Stripe customer
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Most recently reconciled subscription row (no FK: subscriptions already point here)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    new_onboarding_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    new_onboarding_completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    subscriptions: Mapped[list["Subscription"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "Subscription", back_populates="profile", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} email={self.email!r} credits={self.credits}>"
