"""
Billing config: typed wrappers over paygate.core.config.settings: plans, prices, correlation tokens.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from paygate.core.config import settings
from paygate.models.subscription_record import PLAN_LIFETIME, PLAN_MONTHLY, PLAN_TYPES, PLAN_YEARLY


def get_correlation_prefix() -> str:
    return settings.correlation_prefix


def is_fallback_enabled() -> bool:
    return settings.matcher_fallback_enabled


def get_access_recency_window() -> timedelta:
    return timedelta(hours=settings.access_recency_hours)


def get_default_currency() -> str:
    return settings.default_currency


def get_plan_prices() -> dict[str, float]:
    """Return {plan_type: price} for the known plans only."""
    raw = json.loads(settings.plan_prices)
    return {str(k): float(v) for k, v in raw.items() if k in PLAN_TYPES}


def get_plan_price(plan_type: str) -> float:
    prices = get_plan_prices()
    if plan_type not in prices:
        raise ValueError(f"No price configured for plan: {plan_type}")
    return prices[plan_type]


def plan_expiry(plan_type: str, start: datetime) -> datetime | None:
    """Expiry of a plan bought at start. None means lifetime (no expiry)."""
    if plan_type == PLAN_LIFETIME:
        return None
    if plan_type == PLAN_MONTHLY:
        return start + relativedelta(months=1)
    if plan_type == PLAN_YEARLY:
        return start + relativedelta(years=1)
    raise ValueError(f"Unknown plan type: {plan_type}")
