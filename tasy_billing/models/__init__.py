"""SQLAlchemy models for Tasy billing.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from tasy_billing.models.profile import Profile
from tasy_billing.models.subscription import Subscription
from tasy_billing.models.webhook_event_log import WebhookEventLog

__all__ = [
    "Profile",
    "Subscription",
    "WebhookEventLog",
]
