from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, String

from paygate.db.base import Base

PROFILE_TRIAL = "trial"
PROFILE_ACTIVE = "active"
PROFILE_EXPIRED = "expired"
PROFILE_CANCELLED = "cancelled"


class EntitlementProfile(Base):
    """Current access-granting state of an account. Written by the provisioner only."""

    __tablename__ = "entitlement_profiles"

    account_id = Column(String, ForeignKey("accounts.id"), primary_key=True)
    email = Column(String, nullable=True)
    full_name = Column(String, nullable=True)
    is_premium = Column(Boolean, nullable=False, default=False)
    subscription_status = Column(String, nullable=False, default=PROFILE_TRIAL)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "NOT (is_premium AND subscription_status = 'trial')",
            name="ck_entitlement_profiles_premium_not_trial",
        ),
    )
