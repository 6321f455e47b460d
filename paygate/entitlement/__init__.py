"""
Entitlement calculation (internal library).
Pure decision layer: stored profile/subscription facts in, AccessView out.
"""
from paygate.entitlement.calculator import compute_access_view, days_left
from paygate.entitlement.models import AccessView, ProfileFacts, SubscriptionFacts

__all__ = [
    "AccessView",
    "ProfileFacts",
    "SubscriptionFacts",
    "compute_access_view",
    "days_left",
]
