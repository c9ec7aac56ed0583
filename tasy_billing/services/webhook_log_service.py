"""Webhook event log — best-effort audit rows for inbound Stripe events."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tasy_billing.billing.exceptions import AuditLogError
from tasy_billing.models.webhook_event_log import EVENT_SOURCE, WebhookEventLog

logger = logging.getLogger(__name__)


async def record_webhook_event(
    session_factory: async_sessionmaker[AsyncSession],
    event_id: str,
    event_type: str,
    stripe_customer_id: str | None,
) -> AuditLogError | None:
    """Insert one webhook_event_log row in its own session.

    Never raises: a failed write is logged and handed back as an
    ``AuditLogError`` so the caller can carry on with the event.
    """
    try:
        async with session_factory() as db:
            db.add(
                WebhookEventLog(
                    event_id=event_id,
                    event_type=event_type,
                    stripe_customer_id=stripe_customer_id,
                    source=EVENT_SOURCE,
                )
            )
            await db.commit()
    except Exception as e:
        error = AuditLogError(event_id, e)
        logger.error("Error logging webhook event %s: %s", event_id, e)
        return error

    logger.info("Webhook event logged: %s", event_id)
    return None
