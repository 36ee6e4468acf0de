"""
JVZooTransaction model: the idempotency log for purchase notifications.

The unique key is (jvzoo_transaction_id, transaction_type). JVZoo sends
the sale's transaction id again on the matching refund or chargeback, so
the id alone is not unique across notification types.

Lifecycle (state):
- RECEIVED: claim in progress. The processor never commits this state,
  so a stored RECEIVED row was left by an interrupted writer and is reclaimable
- APPLIED: license changes committed, processed = True
- FAILED: apply raised; processing_error holds the reason, reclaimable
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from adgenius.db_base import Base
from adgenius.models.base import generate_uuid


class TransactionType(str, enum.Enum):
    SALE = "SALE"
    REFUND = "REFUND"
    CHARGEBACK = "CHARGEBACK"
    RECURRING = "RECURRING"
    CANCEL = "CANCEL"


class TransactionState(str, enum.Enum):
    RECEIVED = "received"
    APPLIED = "applied"
    FAILED = "failed"


class JVZooTransaction(Base):
    __tablename__ = "jvzoo_transactions"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    jvzoo_transaction_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="JVZoo ctransreceipt"
    )

    transaction_type = Column(
        SAEnum(TransactionType, name="jvzoo_transaction_type", create_constraint=True),
        nullable=False,
        comment="Normalised notification type"
    )

    jvzoo_product_id = Column(
        String(50),
        nullable=True,
        comment="JVZoo product item number as received"
    )

    product_id = Column(
        String(50),
        nullable=True,
        comment="Resolved catalog product id"
    )

    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    amount = Column(Numeric(10, 2), nullable=True)

    verified = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Signature verified"
    )

    processed = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="License changes committed"
    )

    state = Column(
        SAEnum(TransactionState, name="jvzoo_transaction_state", create_constraint=True),
        nullable=False,
        default=TransactionState.RECEIVED,
        index=True,
    )

    processing_error = Column(
        Text,
        nullable=True,
        comment="Last apply error, kept for manual review"
    )

    raw_ipn_data = Column(
        JSON,
        nullable=True,
        comment="Notification payload as received"
    )

    user_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="User the notification was applied to"
    )

    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "jvzoo_transaction_id",
            "transaction_type",
            name="uq_jvzoo_transactions_txn_type",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<JVZooTransaction(id={self.jvzoo_transaction_id}, "
            f"type={self.transaction_type}, state={self.state})>"
        )
