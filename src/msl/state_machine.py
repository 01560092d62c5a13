from __future__ import annotations

from datetime import datetime

from mwp.models import ManagedSubscription, SubscriptionStatus

from .errors import SubscriptionTransitionError

ALLOWED_TRANSITIONS: dict[SubscriptionStatus, set[SubscriptionStatus]] = {
    "PENDING": {"RUNNING", "CANCELLED"},
    "RUNNING": {"MATURED", "LIQUIDATING", "SETTLED"},
    "MATURED": {"LIQUIDATING", "SETTLED"},
    "LIQUIDATING": {"SETTLED"},
    "SETTLED": set(),
    "CANCELLED": set(),
}


def transition_subscription_status(
    subscription: ManagedSubscription,
    next_status: SubscriptionStatus,
    now: datetime,
) -> ManagedSubscription:
    if next_status not in ALLOWED_TRANSITIONS[subscription.status]:
        raise SubscriptionTransitionError(subscription.id, subscription.status, next_status)
    subscription.status = next_status
    subscription.updated_at = now
    return subscription
