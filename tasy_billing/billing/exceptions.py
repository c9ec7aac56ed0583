"""Billing error types.

``BillingError`` subclasses are raised inside webhook handlers and end up in
the server log only. ``AuditLogError`` is not a ``BillingError``: audit-log
failures are returned as values and kept apart from event processing.
"""


class BillingError(Exception):
    """Base class for reconciliation failures."""


class UnknownPriceError(BillingError):
    """A subscription carries a price id missing from the price table."""

    def __init__(self, price_id: str | None) -> None:
        self.price_id = price_id
        super().__init__(f"Unknown price ID: {price_id}")


class UserResolutionError(BillingError):
    """No profile could be matched to a Stripe customer."""

    def __init__(self, customer_id: str) -> None:
        self.customer_id = customer_id
        super().__init__(f"Cannot identify user for customer {customer_id}")


class AuditLogError(Exception):
    """Writing a webhook_event_log row failed."""

    def __init__(self, event_id: str, cause: Exception) -> None:
        self.event_id = event_id
        self.cause = cause
        super().__init__(f"Failed to log webhook event {event_id}: {cause}")
