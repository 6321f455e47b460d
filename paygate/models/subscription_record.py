"""
SubscriptionRecord: append-only, one per confirmed payment or renewal.
The most recently created approved record is authoritative; older ones are history.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, Numeric, String

from paygate.db.base import Base

PLAN_MONTHLY = "monthly"
PLAN_YEARLY = "yearly"
PLAN_LIFETIME = "lifetime"

PLAN_TYPES = (PLAN_MONTHLY, PLAN_YEARLY, PLAN_LIFETIME)


class SubscriptionRecord(Base):
    __tablename__ = "subscription_records"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False)
    # One record per confirmed purchase intent; null for purchases without an intent.
    purchase_intent_id = Column(String, ForeignKey("purchase_intents.id"), nullable=True, unique=True)
    plan_type = Column(String, nullable=False, default=PLAN_LIFETIME)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="BRL")
    status = Column(String, nullable=False, default="approved")  # pending / approved
    expires_at = Column(DateTime(timezone=True), nullable=True)    # null = lifetime
    processor = Column(String, nullable=True)
    processor_order_id = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_subscription_records_account_status_created", "account_id", "status", "created_at"),
    )
