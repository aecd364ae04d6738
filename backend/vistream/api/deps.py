"""Shared API dependencies — single import point for all routers.

    from vistream.api.deps import get_db, get_current_user
"""

from vistream.auth.dependencies import get_current_user, require_roles
from vistream.billing.rate_limit import get_rate_limiter
from vistream.database import get_db

__all__ = [
    "get_db",
    "get_current_user",
    "get_rate_limiter",
    "require_roles",
]
