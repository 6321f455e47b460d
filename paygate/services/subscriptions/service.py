"""
SubscriptionService: loads the stored facts of an account and computes its AccessView.
"""
from datetime import datetime

from sqlalchemy.orm import Session

from paygate.entitlement import AccessView, ProfileFacts, SubscriptionFacts, compute_access_view
from paygate.models.entitlement_profile import EntitlementProfile
from paygate.models.subscription_record import SubscriptionRecord


class SubscriptionService:
    def __init__(self, db: Session):
        self.db = db

    def get_profile(self, account_id: str) -> EntitlementProfile | None:
        return (
            self.db.query(EntitlementProfile)
            .filter(EntitlementProfile.account_id == account_id)
            .one_or_none()
        )

    def latest_approved_record(self, account_id: str) -> SubscriptionRecord | None:
        return (
            self.db.query(SubscriptionRecord)
            .filter(
                SubscriptionRecord.account_id == account_id,
                SubscriptionRecord.status == "approved",
            )
            .order_by(SubscriptionRecord.created_at.desc())
            .first()
        )

    def access_view(self, account_id: str, now: datetime | None = None) -> AccessView:
        profile = self.get_profile(account_id)
        record = self.latest_approved_record(account_id)
        profile_facts = (
            ProfileFacts(
                is_premium=bool(profile.is_premium),
                subscription_status=profile.subscription_status,
                trial_end_date=profile.trial_end_date,
            )
            if profile
            else ProfileFacts()
        )
        subscription_facts = (
            SubscriptionFacts(plan_type=record.plan_type, expires_at=record.expires_at) if record else None
        )
        return compute_access_view(profile_facts, subscription_facts, now=now)
