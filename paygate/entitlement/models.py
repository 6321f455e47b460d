"""
DTO entitlement: ProfileFacts + SubscriptionFacts (input of compute_access_view), AccessView (output).
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class ProfileFacts(BaseModel):
    """Stored EntitlementProfile fields the calculation depends on."""

    is_premium: bool = False
    subscription_status: str = "trial"
    trial_end_date: datetime | None = None

    model_config = {"frozen": True}


class SubscriptionFacts(BaseModel):
    """Latest approved SubscriptionRecord; absent when the account never paid."""

    plan_type: str
    expires_at: datetime | None = None  # None = lifetime

    model_config = {"frozen": True}


class AccessView(BaseModel):
    """Normalized entitlement read model, serialized with camelCase keys for the client."""

    is_premium: bool
    subscription_status: str = Field(..., description="active if premium, otherwise expired")
    trial_end_date: datetime | None = None
    subscription_end_date: datetime | None = None
    trial_days_left: int | None = Field(None, description="None = no trial end date")
    subscription_days_left: int | None = Field(None, description="None = lifetime, no ceiling")
    is_trial_active: bool = False
    has_access: bool
    plan_type: str | None = None

    model_config = {"frozen": True, "alias_generator": to_camel, "populate_by_name": True}
