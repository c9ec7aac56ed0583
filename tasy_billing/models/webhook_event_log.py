"""Webhook event log — advisory audit trail of inbound Stripe events."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from tasy_billing.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

EVENT_SOURCE = "edge_function_viral"


class WebhookEventLog(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One row per verified webhook delivery. Never updated or deleted."""

    __tablename__ = "webhook_event_log"

    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False, default=EVENT_SOURCE)

    def __repr__(self) -> str:
        return f"<WebhookEventLog {self.event_id} ({self.event_type})>"
