from __future__ import annotations

from datetime import datetime, timedelta


def resolve_subscription_trial(
    *,
    existing_subscription_count: int,
    term_duration_days: int,
    now: datetime,
    max_trial_duration_days: int,
) -> tuple[bool, datetime | None]:
    """First subscription of a wallet on a short term runs as a fee-free trial."""
    if existing_subscription_count > 0:
        return False, None
    if max_trial_duration_days <= 0 or term_duration_days > max_trial_duration_days:
        return False, None
    return True, now + timedelta(days=term_duration_days)
