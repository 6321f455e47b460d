"""
Account: identity-provider user, created on the first confirmed purchase for an email.
The credential is generated, hashed and never transmitted; access goes through session tokens.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB

from paygate.db.base import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)  # case-sensitive exact match
    credential_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    # created_via, processor order id, etc.
    metadata_ = Column("metadata", JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
