"""
PurchaseEventProcessor: applies JVZoo notifications to license state.

Pipeline for every notification:
1. Parse (JVZoo or generic field names)
2. Verify the digest; failures are logged and never stored
3. Claim the idempotency row (unique jvzoo_transaction_id + type)
4. Apply the license change
5. Mark the row APPLIED, commit, invalidate cached entitlements

Steps 3 to 5 are one transaction. If the apply raises, that transaction
is rolled back and the failure is stored on its own, so a notification
is either applied together with its claim or left open for a retry.

Outcomes:
- APPLIED: license state changed
- DUPLICATE: already applied
- VERIFICATION_FAILED: forged or malformed, nothing applied
- FAILED: apply raised; processing_error is stored and the row can be retried

SECURITY:
- Nothing from a notification is applied before the digest matches
- Licenses are never deleted; refunds and chargebacks change status only
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from adgenius.config import LicensingConfig, get_config
from adgenius.entitlements.cache import EntitlementCache
from adgenius.entitlements.catalog import get_product
from adgenius.entitlements.errors import VerificationFailedError
from adgenius.entitlements.resolver import EntitlementResolver
from adgenius.integrations.jvzoo.ipn import PurchaseEvent, parse_ipn, verify_signature
from adgenius.models.jvzoo_transaction import (
    JVZooTransaction,
    TransactionState,
    TransactionType,
)
from adgenius.models.user import User, normalize_email
from adgenius.models.user_license import LicenseStatus, UserLicense
from adgenius.services.license_keys import generate_license_key

logger = logging.getLogger(__name__)


class ProcessOutcome(str, enum.Enum):
    APPLIED = "APPLIED"
    DUPLICATE = "DUPLICATE"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    FAILED = "FAILED"


class LicenseNotFoundError(Exception):
    """Raised when a refund, chargeback or rebill has no matching license."""

    def __init__(self, transaction_id: str, customer_email: str):
        super().__init__(
            f"No license found for transaction {transaction_id} ({customer_email})"
        )
        self.transaction_id = transaction_id
        self.customer_email = customer_email


@dataclass(frozen=True)
class ProcessResult:
    outcome: ProcessOutcome
    transaction_id: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    user_id: Optional[str] = None
    license_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "transaction_id": self.transaction_id,
            "transaction_type": self.transaction_type.value if self.transaction_type else None,
            "user_id": self.user_id,
            "license_id": self.license_id,
            "error": self.error,
        }


class PurchaseEventProcessor:
    """Applies purchase notifications within one database session."""

    def __init__(
        self,
        session: Session,
        config: Optional[LicensingConfig] = None,
        cache: Optional[EntitlementCache] = None,
    ):
        self.session = session
        self.config = config or get_config()
        self.resolver = EntitlementResolver(session, cache=cache)

    def apply_transaction(self, raw_event: Mapping[str, Any]) -> ProcessResult:
        """
        Process one notification body.

        Never raises for notification problems; the outcome says what happened.
        """
        try:
            event = parse_ipn(raw_event)
            verify_signature(event, self.config.jvzoo_secret_key)
        except VerificationFailedError as exc:
            logger.warning(
                "IPN verification failed",
                extra={"transaction_id": exc.transaction_id, "reason": exc.reason},
            )
            return ProcessResult(
                outcome=ProcessOutcome.VERIFICATION_FAILED,
                transaction_id=exc.transaction_id,
                error=exc.reason,
            )

        txn = self._claim(event, raw_event)
        if txn is None:
            logger.info(
                "IPN already processed",
                extra={
                    "transaction_id": event.transaction_id,
                    "transaction_type": event.transaction_type.value,
                },
            )
            return ProcessResult(
                outcome=ProcessOutcome.DUPLICATE,
                transaction_id=event.transaction_id,
                transaction_type=event.transaction_type,
            )

        try:
            license_row = self._apply(event)
            txn.user_id = license_row.user_id
            txn.product_id = license_row.product_id
            txn.processed = True
            txn.state = TransactionState.APPLIED
            txn.processing_error = None
            txn.processed_at = datetime.now(timezone.utc)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            self._record_failure(event, raw_event, exc)
            return ProcessResult(
                outcome=ProcessOutcome.FAILED,
                transaction_id=event.transaction_id,
                transaction_type=event.transaction_type,
                error=str(exc),
            )

        self.resolver.invalidate(license_row.user_id)
        logger.info(
            "IPN applied",
            extra={
                "transaction_id": event.transaction_id,
                "transaction_type": event.transaction_type.value,
                "user_id": license_row.user_id,
                "license_id": license_row.id,
                "product_id": license_row.product_id,
            },
        )
        return ProcessResult(
            outcome=ProcessOutcome.APPLIED,
            transaction_id=event.transaction_id,
            transaction_type=event.transaction_type,
            user_id=license_row.user_id,
            license_id=license_row.id,
        )

    # =========================================================================
    # Idempotency
    # =========================================================================

    def _new_transaction(self, event: PurchaseEvent, raw_event: Mapping[str, Any]) -> JVZooTransaction:
        return JVZooTransaction(
            jvzoo_transaction_id=event.transaction_id,
            transaction_type=event.transaction_type,
            jvzoo_product_id=event.vendor_product_id,
            product_id=event.product_id,
            customer_email=event.customer_email,
            customer_name=event.customer_name,
            amount=event.amount,
            verified=True,
            processed=False,
            state=TransactionState.RECEIVED,
            raw_ipn_data={str(k): v for k, v in raw_event.items()},
        )

    def _claim(self, event: PurchaseEvent, raw_event: Mapping[str, Any]) -> Optional[JVZooTransaction]:
        """
        Claim the idempotency row inside the apply transaction.

        Nothing is committed here, so the claim becomes visible together
        with the license change and an interrupted apply leaves no claim
        behind. An existing row that was never applied (failed, or left in
        received by an interrupted writer) is reclaimed. None means the
        notification was already applied.
        """
        self.session.add(self._new_transaction(event, raw_event))
        try:
            self.session.flush()
            return self._find_transaction(event)
        except IntegrityError:
            self.session.rollback()

        reclaimed = self.session.execute(
            update(JVZooTransaction)
            .where(
                JVZooTransaction.jvzoo_transaction_id == event.transaction_id,
                JVZooTransaction.transaction_type == event.transaction_type,
                JVZooTransaction.state != TransactionState.APPLIED,
            )
            .values(state=TransactionState.RECEIVED, processing_error=None)
            .execution_options(synchronize_session=False)
        )
        if reclaimed.rowcount != 1:
            self.session.rollback()
            return None

        logger.info(
            "Retrying unapplied IPN",
            extra={"transaction_id": event.transaction_id},
        )
        return self._find_transaction(event)

    def _find_transaction(self, event: PurchaseEvent) -> Optional[JVZooTransaction]:
        return (
            self.session.query(JVZooTransaction)
            .filter(
                JVZooTransaction.jvzoo_transaction_id == event.transaction_id,
                JVZooTransaction.transaction_type == event.transaction_type,
            )
            .populate_existing()
            .one_or_none()
        )

    def _record_failure(
        self,
        event: PurchaseEvent,
        raw_event: Mapping[str, Any],
        exc: Exception,
    ) -> None:
        """Store the failure in its own transaction; the apply was rolled back."""
        logger.error(
            "IPN processing failed",
            extra={
                "transaction_id": event.transaction_id,
                "transaction_type": event.transaction_type.value,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        txn = self._find_transaction(event)
        if txn is None:
            txn = self._new_transaction(event, raw_event)
            self.session.add(txn)
        elif txn.state == TransactionState.APPLIED:
            return

        txn.state = TransactionState.FAILED
        txn.processed = False
        txn.processing_error = str(exc)[:2000]
        try:
            self.session.commit()
        except IntegrityError:
            # A concurrent delivery claimed the row first; its outcome stands
            self.session.rollback()

    # =========================================================================
    # Apply
    # =========================================================================

    def _apply(self, event: PurchaseEvent) -> UserLicense:
        handlers = {
            TransactionType.SALE: self._apply_sale,
            TransactionType.REFUND: self._apply_refund,
            TransactionType.CHARGEBACK: self._apply_chargeback,
            TransactionType.RECURRING: self._apply_recurring,
            TransactionType.CANCEL: self._apply_cancel,
        }
        return handlers[event.transaction_type](event)

    def _apply_sale(self, event: PurchaseEvent) -> UserLicense:
        product = get_product(event.product_id or event.vendor_product_id)
        user = self._get_or_create_user(event)
        now = datetime.now(timezone.utc)

        license_row = UserLicense(
            user_id=user.id,
            product_id=product.product_id,
            license_key=generate_license_key(self.config.license_secret),
            status=LicenseStatus.ACTIVE,
            purchase_amount=event.amount,
            purchase_date=now,
            credits_total=product.credits_monthly,
            credits_used=0,
            credits_reset_date=(
                now + timedelta(days=self.config.credit_period_days)
                if product.credits_monthly
                else None
            ),
            jvzoo_transaction_id=event.transaction_id,
            jvzoo_product_id=event.vendor_product_id,
            last_payment_date=now,
            payment_count=1,
            max_activations=product.max_activations,
        )
        self.session.add(license_row)
        self.session.flush()
        return license_row

    def _apply_refund(self, event: PurchaseEvent) -> UserLicense:
        license_row = self._find_license(event)
        license_row.status = LicenseStatus.REFUNDED
        license_row.refunded_at = datetime.now(timezone.utc)
        return license_row

    def _apply_chargeback(self, event: PurchaseEvent) -> UserLicense:
        license_row = self._find_license(event)
        license_row.status = LicenseStatus.CHARGEBACK
        license_row.chargeback_at = datetime.now(timezone.utc)
        return license_row

    def _apply_recurring(self, event: PurchaseEvent) -> UserLicense:
        license_row = self._find_license(event)
        license_row.payment_count = (license_row.payment_count or 0) + 1
        license_row.last_payment_date = datetime.now(timezone.utc)
        if license_row.status == LicenseStatus.CANCELLED:
            license_row.status = LicenseStatus.ACTIVE
            license_row.cancelled_at = None
        return license_row

    def _apply_cancel(self, event: PurchaseEvent) -> UserLicense:
        license_row = self._find_license(event)
        license_row.status = LicenseStatus.CANCELLED
        license_row.cancelled_at = datetime.now(timezone.utc)
        return license_row

    def _find_license(self, event: PurchaseEvent) -> UserLicense:
        """By originating sale id first, then by product and customer email."""
        license_row = (
            self.session.query(UserLicense)
            .filter(UserLicense.jvzoo_transaction_id == event.transaction_id)
            .order_by(UserLicense.purchase_date.desc())
            .first()
        )
        if license_row is not None:
            return license_row

        if event.product_id:
            license_row = (
                self.session.query(UserLicense)
                .join(User, User.id == UserLicense.user_id)
                .filter(
                    User.email == normalize_email(event.customer_email),
                    UserLicense.product_id == event.product_id,
                )
                .order_by(UserLicense.purchase_date.desc())
                .first()
            )
            if license_row is not None:
                return license_row

        raise LicenseNotFoundError(event.transaction_id, event.customer_email)

    def _get_or_create_user(self, event: PurchaseEvent) -> User:
        email = normalize_email(event.customer_email)
        user = self.session.query(User).filter(User.email == email).first()
        if user is not None:
            return user

        user = User(
            email=email,
            name=event.customer_name or "JVZoo Customer",
            created_via="jvzoo",
        )
        self.session.add(user)
        self.session.flush()
        logger.info("Created user from JVZoo sale", extra={"user_id": user.id})
        return user
