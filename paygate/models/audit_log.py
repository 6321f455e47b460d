"""
AuditLog: durable trail of matching decisions that need a human look later
(payments with no intent, intents picked by the fallback tier).
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB

from paygate.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_action_created_at", "action", "created_at"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    actor_type = Column(String, nullable=False)  # processor
    actor_id = Column(String, nullable=True)     # mercadopago / kiwify
    action = Column(String, nullable=False)      # order_not_found, order_match_fallback, ...
    entity_type = Column(String, nullable=False)  # payment / purchase_intent
    entity_id = Column(String, nullable=True)
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
