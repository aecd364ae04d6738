"""Role-based row visibility for the admin read endpoints."""

import logging
import uuid
from typing import Any

from sqlalchemy import Select, select

from vistream.billing.errors import AccessDenied
from vistream.models.payment import Payment
from vistream.models.subscription import Subscription
from vistream.models.user import ROLE_ADMIN, ROLE_AFFILIATE

logger = logging.getLogger(__name__)


def affiliated_customer_ids(caller_id: uuid.UUID) -> Select:
    """Subquery: users whose subscriptions were referred by ``caller_id``."""
    return select(Subscription.user_id).where(Subscription.affiliated_user_id == caller_id)


def scope_to_caller(role: str, caller_id: uuid.UUID, query: Select, model: Any) -> Select:
    """Narrow ``query`` over ``model`` to the rows ``role`` may see.

    Admins see everything. Affiliates see subscriptions they referred and
    the payments of those customers. Anyone else is refused.
    """
    if role == ROLE_ADMIN:
        return query
    if role != ROLE_AFFILIATE:
        logger.warning("User %s with role %r refused admin listing", caller_id, role)
        raise AccessDenied(detail=f"role {role!r} cannot list {model.__tablename__}")

    if model is Subscription:
        return query.where(Subscription.affiliated_user_id == caller_id)
    if model is Payment:
        return query.where(Payment.user_id.in_(affiliated_customer_ids(caller_id)))
    raise ValueError(f"No visibility rule for {model!r}")
