"""UsageLog model: one row per metered action, including unlimited users."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from adgenius.db_base import Base
from adgenius.models.base import generate_uuid


class UsageLog(Base):
    __tablename__ = "usage_logs"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    user_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Authenticated user id (JWT subject)"
    )

    action_type = Column(String(100), nullable=False)

    credits_consumed = Column(
        Integer,
        nullable=False,
        default=0,
        comment="0 for unlimited users"
    )

    unlimited = Column(Boolean, nullable=False, default=False)

    debits = Column(
        JSON,
        nullable=False,
        default=list,
        comment="List of {license_id, amount} charged"
    )

    # "metadata" is reserved on declarative classes
    action_metadata = Column("metadata", JSON, nullable=True)

    refunded_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set when the credits were returned"
    )

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
