"""
KiwifyCustomer: last known processor B customer data per email, refreshed on
every purchase lookup that finds a paid order.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from paygate.db.base import Base


class KiwifyCustomer(Base):
    __tablename__ = "kiwify_customers"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    kiwify_customer_id = Column(String, nullable=True)
    name = Column(String, nullable=True)
    last_order_id = Column(String, nullable=True)
    last_purchase_date = Column(String, nullable=True)  # as reported by Kiwify
    status = Column(String, nullable=False, default="active")
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
