"""
UserLicense model.

One row per purchased product. Rows are never deleted: refunds,
chargebacks and cancelled rebills only move the status away from
ACTIVE, which removes the license from entitlement resolution.

Credit invariants (limited licenses only):
- credits_total NULL means unlimited and bypasses the numeric ledger
- credits_used <= credits_total, enforced by conditional UPDATEs

Activation invariant: activations <= max_activations, enforced the same way.
"""

import enum
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from adgenius.db_base import Base
from adgenius.models.base import TimestampMixin, generate_uuid

if TYPE_CHECKING:
    from adgenius.models.user import User


class LicenseStatus(str, enum.Enum):
    """License lifecycle status."""
    ACTIVE = "active"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"      # Rebill cancelled
    CHARGEBACK = "chargeback"


class UserLicense(Base, TimestampMixin):
    __tablename__ = "user_licenses"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    user_id = Column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owner of the license"
    )

    product_id = Column(
        String(50),
        nullable=False,
        comment="Catalog product id (frontend, pro_license, ...)"
    )

    license_key = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="Opaque AG-XXXX license key"
    )

    status = Column(
        SAEnum(LicenseStatus, name="license_status", create_constraint=True),
        nullable=False,
        default=LicenseStatus.ACTIVE,
        index=True,
        comment="Only ACTIVE licenses grant features"
    )

    purchase_amount = Column(
        Numeric(10, 2),
        nullable=True,
        comment="Amount paid, in dollars"
    )

    purchase_date = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the sale was applied"
    )

    # Credits: NULL total means unlimited
    credits_total = Column(
        Integer,
        nullable=True,
        comment="Credits granted per period; NULL means unlimited"
    )

    credits_used = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Credits consumed in the current period"
    )

    credits_reset_date = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When credits_used next returns to zero"
    )

    # JVZoo references
    jvzoo_transaction_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="JVZoo transaction id of the originating sale"
    )

    jvzoo_product_id = Column(
        String(50),
        nullable=True,
        comment="JVZoo product item number"
    )

    # Lifecycle timestamps
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    chargeback_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Recurring billing
    last_payment_date = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last successful rebill"
    )

    payment_count = Column(
        Integer,
        nullable=False,
        default=1,
        comment="Number of payments received, including the initial sale"
    )

    # Device activations of the license key
    activations = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Devices the key has been activated on"
    )

    max_activations = Column(
        Integer,
        nullable=False,
        default=1,
        comment="Activation cap copied from the catalog at sale time"
    )

    last_validated_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last successful key validation"
    )

    user = relationship("User", back_populates="licenses")

    __table_args__ = (
        CheckConstraint("credits_used >= 0", name="ck_user_licenses_credits_used_nonneg"),
        CheckConstraint(
            "credits_total IS NULL OR credits_used <= credits_total",
            name="ck_user_licenses_credits_within_total",
        ),
        CheckConstraint("activations >= 0", name="ck_user_licenses_activations_nonneg"),
        CheckConstraint(
            "activations <= max_activations",
            name="ck_user_licenses_activations_within_max",
        ),
        Index("ix_user_licenses_user_status", "user_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == LicenseStatus.ACTIVE

    @property
    def is_unlimited(self) -> bool:
        return self.credits_total is None

    @property
    def credits_remaining(self) -> int:
        if self.credits_total is None:
            return 0
        return max(0, self.credits_total - (self.credits_used or 0))

    def __repr__(self) -> str:
        return (
            f"<UserLicense(id={self.id}, user_id={self.user_id}, "
            f"product_id={self.product_id}, status={self.status})>"
        )
