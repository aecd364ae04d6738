"""Subscription change notifications.

Email delivery lives in another service; here the change is only logged so
that the mailer (or an operator) can pick it up.
"""

import logging

from vistream.models.payment import Payment
from vistream.models.subscription import Subscription

logger = logging.getLogger(__name__)


def notify_subscription_changed(subscription: Subscription, operation: str, payment: Payment | None = None) -> None:
    logger.info(
        "subscription_changed operation=%s subscription=%s user=%s plan=%r end_date=%s payment=%s",
        operation,
        subscription.id,
        subscription.user_id,
        subscription.plan_name,
        subscription.end_date.isoformat() if subscription.end_date else None,
        payment.id if payment is not None else None,
    )
