"""Shared API dependencies — single import point for all routers.

Re-exports database session and authentication dependencies so that router
modules can import everything they need from one place::

    from tasy_billing.api.deps import get_db, get_current_profile
"""

from tasy_billing.auth.dependencies import get_current_profile, get_token_claims
from tasy_billing.database import get_db

__all__ = [
    "get_db",
    "get_current_profile",
    "get_token_claims",
]
