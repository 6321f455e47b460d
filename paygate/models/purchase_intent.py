"""
PurchaseIntent: one row per checkout attempt.
Mutated only by the matching/webhook pipeline; never deleted.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Numeric, String

from paygate.db.base import Base

INTENT_PENDING = "pending"
INTENT_APPROVED = "approved"
INTENT_REJECTED = "rejected"
INTENT_CANCELLED = "cancelled"

INTENT_STATUSES = (INTENT_PENDING, INTENT_APPROVED, INTENT_REJECTED, INTENT_CANCELLED)


class PurchaseIntent(Base):
    __tablename__ = "purchase_intents"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, nullable=True, index=True)          # null until the processor reveals it
    processor = Column(String, nullable=False, default="mercadopago")  # mercadopago / kiwify
    processor_reference_id = Column(String, nullable=True, index=True)  # preference id / order id
    external_reference = Column(String, nullable=True, unique=True)     # correlation token issued at checkout
    processor_payment_id = Column(String, nullable=True, index=True)    # last payment bound to this intent
    plan_type = Column(String, nullable=False, default="lifetime")      # monthly / yearly / lifetime
    product_name = Column(String, nullable=True)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="BRL")
    status = Column(String, nullable=False, default=INTENT_PENDING)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_purchase_intents_status_created", "status", "created_at"),
        Index("ix_purchase_intents_email_status", "email", "status"),
    )
