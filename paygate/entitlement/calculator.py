"""
Decision only: compute_access_view(profile, subscription, now) -> AccessView.
Pure function, no I/O. Access is premium-only: trial fields are still reported
but never grant access.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone

from paygate.entitlement.models import AccessView, ProfileFacts, SubscriptionFacts

SECONDS_PER_DAY = 86400


def as_utc(value: datetime) -> datetime:
    """Naive datetimes from the store are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_left(date: datetime | None, now: datetime) -> int | None:
    """
    Whole days until date, rounded up, never negative.
    None for a null date (lifetime plans have no ceiling).
    """
    if date is None:
        return None
    remaining = (as_utc(date) - as_utc(now)).total_seconds()
    return max(0, math.ceil(remaining / SECONDS_PER_DAY))


def compute_access_view(
    profile: ProfileFacts,
    subscription: SubscriptionFacts | None,
    now: datetime | None = None,
) -> AccessView:
    now = now or datetime.now(timezone.utc)
    subscription_end = subscription.expires_at if subscription else None

    return AccessView(
        is_premium=profile.is_premium,
        subscription_status="active" if profile.is_premium else "expired",
        trial_end_date=profile.trial_end_date,
        subscription_end_date=subscription_end,
        trial_days_left=days_left(profile.trial_end_date, now),
        subscription_days_left=days_left(subscription_end, now),
        # Trial-based access is retired; the trial fields are informational only.
        is_trial_active=False,
        has_access=profile.is_premium,
        plan_type=subscription.plan_type if subscription else None,
    )
